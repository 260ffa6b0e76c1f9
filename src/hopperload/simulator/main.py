"""GraphHopper-like routing service for exercising hopperload locally."""

import argparse
import asyncio
import random
from typing import List, Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from hopperload.coordinates import haversine_km
from hopperload.models import Coordinate

# Average speeds used to turn a straight-line distance into a travel time
VEHICLE_SPEEDS_KMH = {"car": 50.0, "bike": 15.0, "foot": 5.0, "motorcycle": 60.0}
DEFAULT_SPEED_KMH = 50.0


def parse_point(text: Optional[str]) -> Optional[Coordinate]:
    if not text:
        return None
    parts = text.split(",")
    if len(parts) != 2:
        return None
    try:
        return Coordinate(float(parts[0]), float(parts[1]))
    except ValueError:
        return None


def travel_time_ms(distance_m: float, vehicle: str) -> int:
    speed_kmh = VEHICLE_SPEEDS_KMH.get(vehicle, DEFAULT_SPEED_KMH)
    return int(distance_m / 1000.0 / speed_kmh * 3600 * 1000)


def route_points(points: List[Coordinate], segments: int = 10) -> dict:
    """LineString through the waypoints, ``segments`` interpolated steps per leg."""
    coordinates = [[points[0].longitude, points[0].latitude]]
    for a, b in zip(points, points[1:]):
        for step in range(1, segments + 1):
            f = step / segments
            coordinates.append(
                [
                    round(a.longitude + (b.longitude - a.longitude) * f, 6),
                    round(a.latitude + (b.latitude - a.latitude) * f, 6),
                ]
            )
    return {"type": "LineString", "coordinates": coordinates}


def route_instructions(distance_m: float, time_ms: int) -> list:
    return [
        {"distance": round(distance_m * 0.3, 1), "sign": 0, "text": "Continue onto Main Street",
         "time": int(time_ms * 0.3), "interval": [0, 3]},
        {"distance": round(distance_m * 0.5, 1), "sign": 2, "text": "Turn right onto High Road",
         "time": int(time_ms * 0.5), "interval": [3, 8]},
        {"distance": round(distance_m * 0.2, 1), "sign": -2, "text": "Turn left onto Station Lane",
         "time": int(time_ms * 0.2), "interval": [8, 10]},
        {"distance": 0.0, "sign": 4, "text": "Arrive at destination", "time": 0, "interval": [10, 10]},
    ]


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"message": message, "hints": [{"message": message, "details": "QueryParam"}]},
    )


def create_app(min_delay_ms: int = 50, max_delay_ms: int = 500) -> FastAPI:
    app = FastAPI(title="Routing Simulator", description="Simulated GraphHopper routing API")

    async def random_delay() -> None:
        if max_delay_ms > 0:
            await asyncio.sleep(random.randint(min_delay_ms, max_delay_ms) / 1000.0)

    @app.get("/health")
    async def health():
        await random_delay()
        return {"status": "ok"}

    @app.get("/route")
    async def route(
        point: List[str] = Query(default=[]),
        vehicle: Optional[str] = None,
        profile: str = "car",
        instructions: str = "true",
        calc_points: str = "true",
    ):
        await random_delay()
        if len(point) < 2:
            return _bad_request("At least 2 points required")

        coordinates = [c for c in (parse_point(p) for p in point) if c is not None]
        if len(coordinates) < 2:
            return _bad_request("Invalid coordinates format")

        distance_m = sum(haversine_km(a, b) for a, b in zip(coordinates, coordinates[1:])) * 1000.0
        time_ms = travel_time_ms(distance_m, vehicle or profile)
        lngs = [c.longitude for c in coordinates]
        lats = [c.latitude for c in coordinates]
        want_points = calc_points.lower() == "true"

        path = {
            "distance": round(distance_m, 1),
            "weight": time_ms / 1000.0,
            "time": time_ms,
            "transfers": 0,
            "points_encoded": False,
            "bbox": [min(lngs) - 0.01, min(lats) - 0.01, max(lngs) + 0.01, max(lats) + 0.01],
            "points": route_points(coordinates) if want_points else {},
            "instructions": route_instructions(distance_m, time_ms)
            if instructions.lower() == "true"
            else [],
            "legs": [],
            "details": {},
            "ascend": random.random() * 100,
            "descend": random.random() * 100,
            "snapped_waypoints": {
                "type": "LineString",
                "coordinates": [[c.longitude, c.latitude] for c in coordinates],
            },
        }
        return {
            "paths": [path],
            "info": {"copyrights": ["Routing Simulator"], "took": random.randint(5, 50)},
        }

    @app.get("/info")
    async def info():
        await random_delay()
        return {
            "version": "8.0",
            "build_date": "2024-01-01T00:00:00Z",
            "features": {"routing": True, "matrix": False, "isochrone": False, "map_matching": False},
            "supported_vehicles": sorted(VEHICLE_SPEEDS_KMH),
        }

    return app


app = create_app()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run the routing simulator",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8989)
    parser.add_argument("--min-delay-ms", type=int, default=50)
    parser.add_argument("--max-delay-ms", type=int, default=500)
    args = parser.parse_args(argv)

    if args.min_delay_ms < 0 or args.max_delay_ms < args.min_delay_ms:
        parser.error("delays must satisfy 0 <= min-delay-ms <= max-delay-ms")

    import uvicorn

    uvicorn.run(create_app(args.min_delay_ms, args.max_delay_ms), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
