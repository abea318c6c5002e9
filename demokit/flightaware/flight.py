"""Simulated flight departures built from a bundled sample of flights."""

from __future__ import annotations

import dataclasses
import json
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

MAX_LISTED_FLIGHTS = 20

_AIRPORTS = {
    "SFO": "KSFO",
    "LAX": "KLAX",
    "JFK": "KJFK",
    "ORD": "KORD",
    "DFW": "KDFW",
    "LAS": "KLAS",
    "BOS": "KBOS",
    "DEN": "KDEN",
    "LHR": "EGLL",
    "RDU": "KRDU",
}

_AIRLINES = {
    "UAL": "United Airlines",
    "DL": "Delta Air Lines",
    "AA": "American Airlines",
    "SW": "Southwest Airlines",
    "JB": "JetBlue Airways",
    "B6": "JetBlue Airways",
    "VS": "Virgin Atlantic",
    "F9": "Frontier Airlines",
    "BA": "British Airways",
}


class FlightDataError(Exception):
    """Raised when the bundled flight data cannot be read."""


@dataclass
class Flight:
    icao24: str = ""
    first_seen: int = 0
    est_departure_airport: str = ""
    last_seen: int = 0
    est_arrival_airport: str = ""
    callsign: str = ""
    est_departure_airport_horiz_distance: int = 0
    est_departure_airport_vert_distance: int = 0
    est_arrival_airport_horiz_distance: int = 0
    est_arrival_airport_vert_distance: int = 0
    departure_airport_candidates_count: int = 0
    arrival_airport_candidates_count: int = 0


_JSON_KEYS = {
    "icao24": "icao24",
    "firstSeen": "first_seen",
    "estDepartureAirport": "est_departure_airport",
    "lastSeen": "last_seen",
    "estArrivalAirport": "est_arrival_airport",
    "callsign": "callsign",
    "estDepartureAirportHorizDistance": "est_departure_airport_horiz_distance",
    "estDepartureAirportVertDistance": "est_departure_airport_vert_distance",
    "estArrivalAirportHorizDistance": "est_arrival_airport_horiz_distance",
    "estArrivalAirportVertDistance": "est_arrival_airport_vert_distance",
    "departureAirportCandidatesCount": "departure_airport_candidates_count",
    "arrivalAirportCandidatesCount": "arrival_airport_candidates_count",
}


def _flight_from_json(data):
    if not isinstance(data, dict):
        raise FlightDataError(f"error parsing flights.json: expected an object, got {data!r}")
    return Flight(**{attr: data[key] for key, attr in _JSON_KEYS.items() if data.get(key) is not None})


@dataclass
class DepartureFlights:
    airport: str
    start: int
    end: int
    flights: list[Flight] = field(default_factory=list)


def icao_code(airport):
    """Map a common three-letter airport code to ICAO; otherwise upper-case it."""
    code = airport.upper()
    return _AIRPORTS.get(code, code)


def airline_name(callsign):
    """Name the airline whose prefix the callsign carries, or 'Unknown'."""
    upper = callsign.upper()
    return next(
        (name for prefix, name in _AIRLINES.items() if upper.startswith(prefix)),
        "Unknown",
    )


class FlightService:
    """Produces plausible departures for any airport from sample flights."""

    def __init__(self, bundle_path, rng=None):
        self.bundle_path = Path(bundle_path)
        self._rng = random.Random() if rng is None else rng
        self.flights = self._load_flights()

    def _load_flights(self):
        path = self.bundle_path / "assets" / "flights.json"
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as err:
            raise FlightDataError(f"error reading flights.json: {err}") from err
        try:
            data = json.loads(text)
        except json.JSONDecodeError as err:
            raise FlightDataError(f"error parsing flights.json: {err}") from err
        if data is None:
            return []
        if not isinstance(data, list):
            raise FlightDataError("error parsing flights.json: expected a list of flights")
        return [_flight_from_json(item) for item in data]

    def get_departure_flights(self, airport):
        """Departures from the airport during the last six hours."""
        icao = icao_code(airport)
        end = int(time.time())
        start = end - 6 * 3600
        return DepartureFlights(
            airport=icao,
            start=start,
            end=end,
            flights=self._random_flights(icao, start, end),
        )

    def _random_flights(self, airport, start, end):
        if not self.flights:
            return []
        count = min(self._rng.randint(3, 8), len(self.flights))
        pool = list(self.flights)
        self._rng.shuffle(pool)
        span = end - start
        chosen = []
        for flight in pool[:count]:
            first_seen = start + self._rng.randrange(span)
            duration = self._rng.randrange(7 * 3600) + 3600
            chosen.append(
                dataclasses.replace(
                    flight,
                    est_departure_airport=airport,
                    first_seen=first_seen,
                    last_seen=first_seen + duration,
                )
            )
        return chosen

    def format_flight_response(self, flights, airport):
        """Render departures as a markdown table."""
        if not flights.flights:
            return f"No departures found from {airport}."

        lines = [
            f"**Recent Departures from {airport}**",
            "",
            "| Flight | Airline | Departure Time | Destination | Duration |",
            "|--------|---------|---------------|-------------|----------|",
        ]
        shown = flights.flights[:MAX_LISTED_FLIGHTS]
        for flight in shown:
            departure = datetime.fromtimestamp(flight.first_seen).astimezone().strftime("%H:%M %Z")
            callsign = flight.callsign.strip()
            destination = flight.est_arrival_airport or "-"
            duration = "-"
            if flight.last_seen > flight.first_seen:
                duration = f"{(flight.last_seen - flight.first_seen) // 60} min"
            lines.append(
                f"| **{callsign}** | {airline_name(callsign)} | {departure} | {destination} | {duration} |"
            )
        text = "\n".join(lines) + "\n"
        if len(flights.flights) > len(shown):
            text += f"\n_Showing {len(shown)} of {len(flights.flights)} total flights_"
        return text