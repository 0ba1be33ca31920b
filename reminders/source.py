# reminders/source.py
"""Easy!Appointments REST client that yields Appointment records."""
import logging

import requests
from dateutil import parser as date_parser
from dateutil import tz

from reminders.engine import Appointment
from reminders.errors import FetchError

logger = logging.getLogger(__name__)


class EasyAppointmentsSource:
    """Reads appointments from ``{api_root}/appointments`` with a bearer API key.

    Customer and service details are looked up per appointment and cached for
    one fetch only, so every cycle starts from a clean slate.
    """

    page_size = 100
    max_pages = 500

    def __init__(self, api_root, api_key, timezone='UTC', timeout=30, session=None):
        self.api_root = api_root.rstrip('/')
        self.timeout = timeout
        self.tz = tz.gettz(timezone)
        if self.tz is None:
            raise ValueError(f"Unknown timezone {timezone!r}")
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f"Bearer {api_key}",
            'Accept': 'application/json',
        })

    def fetch_upcoming(self):
        customers, services = {}, {}
        appointments = []
        for record in self._paged('appointments'):
            appointments.append(self._to_appointment(record, customers, services))
        logger.debug(f"Fetched {len(appointments)} appointment(s) from {self.api_root}")
        return appointments

    def _get(self, path, params=None, allow_missing=False):
        url = f"{self.api_root}/{path}"
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"GET {url} failed: {e}") from e
        if allow_missing and r.status_code == 404:
            return None
        if not r.ok:
            raise FetchError(f"GET {url} returned HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise FetchError(f"GET {url} returned a non-JSON body") from e

    def _paged(self, path):
        page = 1
        previous = None
        while page <= self.max_pages:
            batch = self._get(path, params={'page': page, 'length': self.page_size, 'sort': '+start'})
            if not isinstance(batch, list):
                raise FetchError(f"Expected a list from /{path}, got {type(batch).__name__}")
            if batch and batch == previous:
                logger.warning(f"/{path} returned page {page} identical to page {page - 1}, server ignores paging")
                return
            yield from batch
            previous = batch
            if len(batch) < self.page_size:
                return
            page += 1

    def _to_appointment(self, record, customers, services):
        if not isinstance(record, dict) or record.get('id') is None or not record.get('start'):
            raise FetchError(f"Malformed appointment record: {record!r}")

        customer = self._lookup(customers, 'customers', record.get('customerId'))
        service = self._lookup(services, 'services', record.get('serviceId'))

        name = " ".join(p for p in (customer.get('firstName'), customer.get('lastName')) if p) or None
        return Appointment(
            id=str(record['id']),
            start=self._parse_time(record['start'], record),
            end=self._parse_time(record['end'], record) if record.get('end') else None,
            email=customer.get('email') or None,
            customer_name=name,
            service_name=service.get('name'),
            location=record.get('location') or None,
        )

    def _lookup(self, cache, path, key):
        if key is None:
            return {}
        if key not in cache:
            found = self._get(f"{path}/{key}", allow_missing=True)
            if found is None:
                logger.warning(f"{path[:-1].capitalize()} {key} not found")
            cache[key] = found if isinstance(found, dict) else {}
        return cache[key]

    def _parse_time(self, value, record):
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError, TypeError) as e:
            raise FetchError(f"Bad timestamp {value!r} in appointment {record.get('id')}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tz)
        return parsed
