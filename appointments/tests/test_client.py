import pytest
import requests

from appointments.client import BookingClient
from appointments.exceptions import (
    AuthorizationError,
    BookingValidationError,
    InvalidTransitionError,
    SlotUnavailableError,
    TransientError,
)


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.headers = {}
        self.calls = []
        self.responses = list(responses)

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append({'method': method, 'url': url, 'timeout': timeout, **kwargs})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def make_client(*responses, **kwargs):
    session = FakeSession(*responses)
    kwargs.setdefault('retry_wait', 0)
    return BookingClient('http://clinic.test/', 'abc123', session=session, **kwargs), session


def test_available_slots():
    client, session = make_client(FakeResponse(200, {'ok': True, 'slots': ['09:00 AM', '09:30 AM']}))
    assert client.available_slots(1, '2030-06-01') == ['09:00 AM', '09:30 AM']
    call = session.calls[0]
    assert call['url'] == 'http://clinic.test/api/availability'
    assert call['params'] == {'doctorId': 1, 'date': '2030-06-01'}
    assert call['timeout'] == 10.0
    assert session.headers['Authorization'] == 'Token abc123'


def test_timeouts_are_retried_for_reads_then_reported():
    client, session = make_client(requests.Timeout(), requests.Timeout(), requests.Timeout(), read_attempts=3)
    with pytest.raises(TransientError):
        client.available_slots(1, '2030-06-01')
    assert len(session.calls) == 3


def test_read_recovers_after_a_timeout():
    client, session = make_client(requests.ConnectionError(), FakeResponse(200, {'ok': True, 'slots': []}))
    assert client.available_slots(1, '2030-06-01') == []
    assert len(session.calls) == 2


@pytest.mark.parametrize('response', [
    FakeResponse(200, ValueError('not json')),
    FakeResponse(200, ['09:00 AM']),
    FakeResponse(200, {'slots': ['09:00 AM']}),
    FakeResponse(200, {'ok': True}),
    FakeResponse(200, {'ok': True, 'slots': [9]}),
    FakeResponse(502, {'ok': False}),
])
def test_malformed_responses_never_become_data(response):
    client, _ = make_client(response, read_attempts=1)
    with pytest.raises(TransientError):
        client.available_slots(1, '2030-06-01')


def test_writes_are_not_retried():
    client, session = make_client(requests.Timeout())
    with pytest.raises(TransientError):
        client.book(1, '2030-06-01', '09:00 AM')
    assert len(session.calls) == 1


def test_error_envelopes_map_to_exceptions():
    client, _ = make_client(
        FakeResponse(409, {'ok': False, 'error': {'code': 'slot_unavailable', 'message': 'taken',
                                                  'doctorId': 1, 'date': '2030-06-01', 'time': '09:00 AM',
                                                  'refetch': True}}),
        FakeResponse(409, {'ok': False, 'error': {'code': 'invalid_transition', 'message': 'no',
                                                  'currentStatus': 'cancelled', 'targetStatus': 'confirmed'}}),
        FakeResponse(403, {'ok': False, 'error': {'code': 'forbidden', 'message': 'no'}}),
        FakeResponse(400, {'ok': False, 'error': {'code': 'invalid', 'message': {'date': ['bad']}}}),
    )
    with pytest.raises(SlotUnavailableError) as exc_info:
        client.book(1, '2030-06-01', '09:00 AM')
    assert exc_info.value.extra['time'] == '09:00 AM'
    with pytest.raises(InvalidTransitionError):
        client.confirm(5)
    with pytest.raises(AuthorizationError):
        client.cancel(5)
    with pytest.raises(BookingValidationError):
        client.reschedule(5, 'bad', '09:00 AM')


def test_book_sends_payload():
    appt = {'id': 7, 'status': 'pending'}
    client, session = make_client(FakeResponse(201, {'ok': True, 'appointment': appt}))
    assert client.book(1, '2030-06-01', '09:00 AM', notes='hi') == appt
    assert session.calls[0]['json'] == {'doctorId': 1, 'date': '2030-06-01', 'time': '09:00 AM', 'notes': 'hi'}
    assert session.calls[0]['method'] == 'POST'
