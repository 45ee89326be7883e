import pytest

from folio.audit import AuditEntry, AuditLog


def test_entries_are_listed_most_recent_last():
    log = AuditLog(capacity=10)
    log.record('1.1.1.1', 'POST', 'projects', 'authenticate', 'AUTHENTICATED')
    log.record('1.1.1.1', 'POST', 'projects', 'csrf', 'CSRF_OK')

    outcomes = [entry.outcome for entry in log.list()]
    assert outcomes == ['AUTHENTICATED', 'CSRF_OK']


def test_oldest_entries_are_evicted_at_capacity():
    log = AuditLog(capacity=3)
    for i in range(5):
        log.record('c', 'POST', f's{i}', 'commit', 'COMMITTED')

    assert len(log) == 3
    assert [entry.section for entry in log.list()] == ['s2', 's3', 's4']


def test_default_capacity_is_one_thousand():
    log = AuditLog()
    for i in range(1001):
        log.record('c', 'POST', 'blogs', 'commit', 'COMMITTED', str(i))
    entries = log.list()
    assert len(entries) == 1000
    assert entries[0].detail == '1'


def test_entries_are_immutable():
    entry = AuditLog().record('c', 'POST', 'blogs', 'commit', 'COMMITTED')
    with pytest.raises(AttributeError):
        entry.outcome = 'TAMPERED'


def test_missing_client_key_is_recorded_as_unknown():
    entry = AuditLog().record(None, 'POST', 'blogs', 'authenticate', 'UNAUTHORIZED')
    assert entry.client_key == 'unknown'
    assert entry.to_dict()['clientKey'] == 'unknown'


def test_sinks_receive_entries_and_failures_do_not_propagate():
    log = AuditLog()
    seen = []

    def broken(entry):
        raise RuntimeError('sink down')

    log.add_sink(broken)
    log.add_sink(seen.append)
    log.append(AuditEntry('2024-01-01T00:00:00+00:00', 'c', 'POST', 'gallery', 'commit', 'COMMITTED'))

    assert len(seen) == 1
    assert len(log) == 1
