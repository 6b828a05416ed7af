#Purpose: The OSRM “adapter/client”.
#Sole responsibility: talk to OSRM via HTTP and return normalized outputs.
#Encapsulates OSRM-specific details:
#coordinate formatting (lon,lat)
#URL construction (/route)
#timeouts/error handling
#parsing response JSON into your internal shape
#It should not contain throttling or countdown logic (see eta_service.py).


from dotenv import load_dotenv
import os
from typing import List, Dict, Any
import requests

from help_requests.models import LngLat

# Read OSRM base URL from environment
# Example in .env:
# BASE_URL=http://router.project-osrm.org
load_dotenv()
BASE_URL = os.getenv("BASE_URL", "https://router.project-osrm.org")


class OSRMError(Exception):
    """Custom exception for OSRM client errors."""
    pass


class OSRMClient:
    """
    OSRM Adapter / Client

    Sole responsibility:
    - Talk to OSRM via HTTP
    - Send coordinates as OSRM expects them (lon,lat), same order as the channel
    - Return normalized outputs

    """
    def __init__(self, profile: str = "driving", timeout: int = 5, base_url: str = None):
        self.base_url = (base_url or BASE_URL or "").rstrip("/")
        self.timeout = timeout #the time to wait for a response from OSRM before giving up
        self.profile = profile #the mode of transportation (driving, walking, cycling)

        if not self.base_url:
            raise ValueError("OSRM base URL not set. Please set BASE_URL in the .env file.")

    #----------------
    # Internal helpers
    #----------------
    def format_coordinates(self, coords: List[LngLat]) -> str:
        """Convert list of (lon, lat) to OSRM format 'lon,lat;lon,lat;...'"""
        return ';'.join([f"{lon},{lat}" for lon, lat in coords])

    #----------------
    # Public methods
    #----------------
    def compute_route(self, coordinates: List[LngLat], *, geometry: bool = True) -> Dict[str, Any]:
        """
        calls the OSRM /route endpoint with the given coordinates and
        returns a dict with distance, duration and (optionally) the route line

        Returns:
            {
                "distance": float, # in meters
                "duration": float, # in seconds
                "geometry": dict | None, # GeoJSON LineString
            }
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        url = f"{self.base_url}/route/v1/{self.profile}/{self.format_coordinates(coordinates)}"

        params = {"overview": "full", "geometries": "geojson"} if geometry else {"overview": "false"}

        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            data = response.json() #OSRM returns a JSON response with routes, each containing distance and duration
        except requests.RequestException as exc:
            raise OSRMError(f"OSRM request failed: {exc}") from exc
        except ValueError as exc:
            raise OSRMError(f"OSRM returned a non-JSON response (HTTP {response.status_code})") from exc

        #validating OSRM response
        if data.get("code") != "Ok":
            raise OSRMError(f"OSRM error: {data.get('message', data.get('code', 'Unknown error'))}")
        if not data.get("routes"):
            raise OSRMError("OSRM returned no routes")

        route = data["routes"][0] #take the first route (OSRM may return alternatives)

        #Normalize output to internal format
        return {
            "distance": float(route["distance"]),
            "duration": float(route["duration"]),
            "geometry": route.get("geometry") if geometry else None,
        }

    def estimate_route(self, origin: LngLat, destination: LngLat) -> Dict[str, Any]:
        """
        Routing provider used by RouteEstimator: origin -> destination.
        """
        return self.compute_route([origin, destination])
