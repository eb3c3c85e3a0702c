from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from typing import Optional

from aiohttp import web
from aiohttp.test_utils import TestServer

from notification_service import NotificationChannel
from record_store import InMemoryRecordStore, RecordStoreError

TODAY = date(2026, 10, 19)


def local_timestamp(day: date, at: time) -> str:
    """ISO timestamp carrying the local UTC offset, as a hosted store returns them"""
    return datetime.combine(day, at).astimezone().isoformat()


def donor_row(name: str, blood_group: str, city: str = "Paris", country: str = "FR",
              days_ago: Optional[int] = None, available: bool = True,
              registered_days_ago: int = 365, phone: Optional[str] = None, **extra):
    row = {
        "id": f"donor-{name.lower().replace(' ', '-')}",
        "full_name": name,
        "phone_number": phone or f"+33-{name.lower().replace(' ', '-')}",
        "country": country,
        "city": city,
        "blood_group": blood_group,
        "last_donation_date": (TODAY - timedelta(days=days_ago)).isoformat() if days_ago is not None else None,
        "is_available": available,
        "created_at": local_timestamp(TODAY - timedelta(days=registered_days_ago), time(12, 0)),
    }
    row.update(extra)
    return row


def request_row(patient: str, blood_group: str, country: str = "FR", city: str = "Paris",
                urgency: str = "high", status: str = "pending", created_days_ago: int = 1, **extra):
    row = {
        "id": f"request-{patient.lower().replace(' ', '-')}",
        "patient_name": patient,
        "blood_group": blood_group,
        "country": country,
        "city": city,
        "urgency_level": urgency,
        "hospital_name": "Hopital Saint-Louis",
        "contact_number": "+33100000000",
        "preferred_date": TODAY.isoformat(),
        "preferred_time": "10:00",
        "status": status,
        "created_at": local_timestamp(TODAY - timedelta(days=created_days_ago), time(9, 0)),
    }
    row.update(extra)
    return row


class RecordingChannel(NotificationChannel):
    """Channel double that records every message it is asked to send"""

    def __init__(self, name: str, succeed: bool = True, error: Optional[Exception] = None):
        self.name = name
        self.succeed = succeed
        self.error = error
        self.sent = []

    async def send(self, address, body, subject=None):
        self.sent.append({"address": address, "body": body, "subject": subject})
        if self.error is not None:
            raise self.error
        return self.succeed


class FailingRecordStore(InMemoryRecordStore):
    """Store whose queries always fail"""

    async def run_query(self, query):
        raise RecordStoreError(f"connection refused while reading {query.table}")


@asynccontextmanager
async def serving(routes):
    """Run an aiohttp app on a local port and yield its base URL"""
    app = web.Application()
    app.add_routes(routes)
    server = TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("")).rstrip("/")
    finally:
        await server.close()
