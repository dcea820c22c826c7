"""
Synthetic Data Generator

Generates realistic EV charging data for testing and development.
Includes:
- Charging stations across European cities
- Customers with subscription plans
- Vehicles from a fixed model catalog
- Charging session events, optionally carrying attribute snapshots
- Station change events (power upgrades, status changes)

Every generator takes a seed, so the same seed yields the same data.
"""

import random
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import polars as pl
from faker import Faker

from src.config import get_settings

# =============================================================================
# CONFIGURATION
# =============================================================================

CITIES = [
    ("Berlin", "Germany", "DE", 52.5200, 13.4050),
    ("Munich", "Germany", "DE", 48.1351, 11.5820),
    ("Hamburg", "Germany", "DE", 53.5511, 9.9937),
    ("Paris", "France", "FR", 48.8566, 2.3522),
    ("Lyon", "France", "FR", 45.7640, 4.8357),
    ("Amsterdam", "Netherlands", "NL", 52.3676, 4.9041),
    ("Rotterdam", "Netherlands", "NL", 51.9244, 4.4777),
]

OPERATORS = {
    "Germany": "Elvah GmbH",
    "France": "Elvah France",
    "Netherlands": "Elvah Nederland",
}

STATION_POWER_KW = [50.0, 100.0, 150.0, 175.0, 250.0, 300.0]

# make, model, battery kWh, max charging kW, category
VEHICLE_CATALOG = [
    ("Tesla", "Model 3", 75.0, 250.0, "Sedan"),
    ("Tesla", "Model Y", 75.0, 250.0, "SUV"),
    ("BMW", "iX3", 80.0, 150.0, "SUV"),
    ("Volkswagen", "ID.4", 82.0, 135.0, "SUV"),
    ("Audi", "e-tron GT", 93.4, 270.0, "Sports Car"),
    ("Mercedes", "EQS", 107.8, 200.0, "Luxury Sedan"),
    ("Hyundai", "Ioniq 5", 77.4, 235.0, "SUV"),
    ("Renault", "Zoe", 52.0, 50.0, "Compact"),
]

CUSTOMER_PROFILES = [
    # type, plan, segment, business, weight
    ("Premium", "Unlimited Monthly", "Frequent User", False, 0.20),
    ("Premium", "Unlimited Annual", "Frequent User", False, 0.10),
    ("Standard", "Pay Per Use", "Occasional User", False, 0.35),
    ("Standard", "Monthly Basic", "Regular User", False, 0.25),
    ("Business", "Fleet Enterprise", "Corporate", True, 0.10),
]

SESSION_STATUSES = [
    ("completed", 0.90),
    ("failed", 0.04),
    ("cancelled", 0.04),
    ("pending", 0.02),
]

PRICE_PER_KWH = (0.39, 0.69)


# =============================================================================
# GENERATORS
# =============================================================================

class StationGenerator:
    """Generate charging stations"""

    def __init__(self, seed: int = 42):
        self.rng = random.Random(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)

    def generate(self, n: int = 50) -> List[Dict[str, Any]]:
        stations = []
        for i in range(n):
            city, country, code, lat, lon = self.rng.choice(CITIES)
            stations.append({
                "station_id": f"STN_{code}{i + 1:03d}",
                "station_name": f"{city} {self.fake.street_name()}",
                "operator_name": OPERATORS[country],
                "connector_type": "CHAdeMO" if self.rng.random() < 0.1 else "CCS2",
                "max_power_kw": self.rng.choice(STATION_POWER_KW),
                "location_address": self.fake.street_address(),
                "city": city,
                "country": country,
                "latitude": round(lat + self.rng.uniform(-0.05, 0.05), 6),
                "longitude": round(lon + self.rng.uniform(-0.05, 0.05), 6),
                "station_status": "Active" if self.rng.random() > 0.05 else "Maintenance",
            })
        return stations


class CustomerGenerator:
    """Generate customers"""

    def __init__(self, seed: int = 42):
        self.rng = random.Random(seed)

    def generate(self, n: int = 500, registered_from: date = date(2023, 1, 1)) -> List[Dict[str, Any]]:
        customers = []
        weights = [p[-1] for p in CUSTOMER_PROFILES]
        for i in range(n):
            customer_type, plan, segment, business, _ = self.rng.choices(CUSTOMER_PROFILES, weights=weights)[0]
            customers.append({
                "customer_id": f"CUST_{i + 1:05d}",
                "customer_type": customer_type,
                "subscription_plan": plan,
                "registration_date": registered_from + timedelta(days=self.rng.randint(0, 364)),
                "home_country": self.rng.choice(CITIES)[1],
                "customer_segment": segment,
                "is_business_customer": business,
            })
        return customers


class VehicleGenerator:
    """Generate vehicles from the model catalog"""

    def __init__(self, seed: int = 42):
        self.rng = random.Random(seed)

    def generate(self, n: int = 500) -> List[Dict[str, Any]]:
        vehicles = []
        for i in range(n):
            make, model, battery, max_power, category = self.rng.choice(VEHICLE_CATALOG)
            vehicles.append({
                "vehicle_id": f"VEH_{i + 1:05d}",
                "make": make,
                "model": model,
                "model_year": self.rng.randint(2020, 2024),
                "battery_capacity_kwh": battery,
                "max_charging_power_kw": max_power,
                "connector_type": "CCS2",
                "vehicle_category": category,
            })
        return vehicles


class SessionGenerator:
    """
    Generate charging session events.

    Peak power is bounded by both the station and the vehicle; delivered
    energy never exceeds the battery capacity.
    """

    def __init__(
        self,
        stations: List[Dict[str, Any]],
        customers: List[Dict[str, Any]],
        vehicles: List[Dict[str, Any]],
        seed: int = 42,
    ):
        self.stations = stations
        self.customers = customers
        self.vehicles = vehicles
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)

    def generate(
        self,
        n: int = 1000,
        start_date: date = date(2024, 1, 1),
        days: int = 90,
        snapshot_rate: float = 0.0,
    ) -> List[Dict[str, Any]]:
        """
        Generate n sessions starting within [start_date, start_date + days).

        snapshot_rate is the share of events that carry station/customer/
        vehicle attribute snapshots rather than bare natural keys.
        """
        statuses = [s for s, _ in SESSION_STATUSES]
        probabilities = [p for _, p in SESSION_STATUSES]
        status_draws = self.np_rng.choice(statuses, size=n, p=probabilities)
        durations = np.clip(self.np_rng.gamma(shape=4.0, scale=12.0, size=n), 5, 240).astype(int)
        start_minutes = self.np_rng.integers(0, days * 24 * 60, size=n)
        base = datetime.combine(start_date, datetime.min.time())

        sessions = []
        for i in range(n):
            station = self.rng.choice(self.stations)
            customer = self.rng.choice(self.customers)
            vehicle = self.rng.choice(self.vehicles)
            status = str(status_draws[i])
            start = base + timedelta(minutes=int(start_minutes[i]))
            duration = int(durations[i])

            event: Dict[str, Any] = {
                "session_id": f"SESS-{i + 1:08d}",
                "station_id": station["station_id"],
                "customer_id": customer["customer_id"],
                "vehicle_id": vehicle["vehicle_id"],
                "session_start_datetime": start,
                "session_status": status,
            }

            if status == "completed":
                peak = min(station["max_power_kw"], vehicle["max_charging_power_kw"]) * self.rng.uniform(0.6, 0.95)
                energy = min(
                    peak * duration / 60 * self.rng.uniform(0.5, 0.8),
                    vehicle["battery_capacity_kwh"],
                )
                event.update({
                    "session_end_datetime": start + timedelta(minutes=duration),
                    "energy_delivered_kwh": round(energy, 3),
                    "charging_duration_minutes": duration,
                    "peak_power_kw": round(peak, 2),
                    "total_cost": round(energy * self.rng.uniform(*PRICE_PER_KWH), 2),
                })
            elif status in ("failed", "cancelled"):
                short = self.rng.randint(0, 5)
                event.update({
                    "session_end_datetime": start + timedelta(minutes=short),
                    "energy_delivered_kwh": 0.0,
                    "charging_duration_minutes": short,
                    "total_cost": 0.0,
                })

            if self.rng.random() < snapshot_rate:
                event["station"] = {k: v for k, v in station.items() if k != "station_id"}
                event["customer"] = {k: v for k, v in customer.items() if k != "customer_id"}
                event["vehicle"] = {k: v for k, v in vehicle.items() if k != "vehicle_id"}

            sessions.append(event)

        sessions.sort(key=lambda e: e["session_start_datetime"])
        return sessions


class StationChangeGenerator:
    """Generate station upgrade and status change events"""

    def __init__(self, seed: int = 42):
        self.rng = random.Random(seed)

    def generate(
        self,
        stations: List[Dict[str, Any]],
        n: int = 10,
        start_date: date = date(2024, 1, 1),
        days: int = 90,
    ) -> List[Dict[str, Any]]:
        changes = []
        base = datetime.combine(start_date, datetime.min.time())
        for station in self.rng.sample(stations, min(n, len(stations))):
            faster = [p for p in STATION_POWER_KW if p > station["max_power_kw"]]
            if faster:
                attributes = {"max_power_kw": self.rng.choice(faster)}
            else:
                attributes = {"station_status": "Maintenance"}
            changes.append({
                "dimension_type": "station",
                "natural_key": station["station_id"],
                "attributes": attributes,
                "effective_time": base + timedelta(days=self.rng.randint(1, days - 1)),
            })
        changes.sort(key=lambda c: c["effective_time"])
        return changes


# =============================================================================
# MAIN GENERATOR
# =============================================================================

def flatten_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Nested snapshots become dotted columns for flat file formats"""
    flat = {}
    for key, value in event.items():
        if isinstance(value, dict):
            for attribute, attribute_value in value.items():
                flat[f"{key}.{attribute}"] = attribute_value
        else:
            flat[key] = value
    return flat


class DataGenerator:
    """Generate a complete, consistent development dataset"""

    def __init__(self, output_dir: Optional[str] = None, seed: int = 42):
        self.output_dir = Path(output_dir or "./data/generated")
        self.seed = seed

    def generate_all(
        self,
        n_stations: int = 50,
        n_customers: int = 500,
        n_vehicles: int = 500,
        n_sessions: int = 5000,
        n_station_changes: int = 10,
        snapshot_rate: float = 0.0,
        save: bool = True,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Generate every dataset, inside the configured calendar range"""
        calendar = get_settings().calendar
        days = max(2, (calendar.end_date - calendar.start_date).days)

        stations = StationGenerator(self.seed).generate(n_stations)
        customers = CustomerGenerator(self.seed).generate(n_customers)
        vehicles = VehicleGenerator(self.seed).generate(n_vehicles)
        sessions = SessionGenerator(stations, customers, vehicles, self.seed).generate(
            n_sessions, calendar.start_date, days, snapshot_rate
        )
        station_changes = StationChangeGenerator(self.seed).generate(
            stations, n_station_changes, calendar.start_date, days
        )

        data = {
            "stations": stations,
            "customers": customers,
            "vehicles": vehicles,
            "sessions": sessions,
            "station_changes": station_changes,
        }
        if save:
            self._save_data(data)
        return data

    def _save_data(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)

        for name in ("stations", "customers", "vehicles"):
            pl.DataFrame(data[name]).write_csv(self.output_dir / f"{name}.csv")

        sessions = pl.DataFrame(
            [flatten_event(e) for e in data["sessions"]],
            infer_schema_length=None,
        )
        sessions.write_csv(self.output_dir / "sessions.csv")

        changes = pl.DataFrame([
            {
                "station_id": c["natural_key"],
                "effective_time": c["effective_time"],
                **c["attributes"],
            }
            for c in data["station_changes"]
        ], infer_schema_length=None)
        changes.write_csv(self.output_dir / "station_changes.csv")
