# aurora

Building blocks for a host security event pipeline. Events are enriched,
process-creation events are cached for parent-process correlation, and every
event is handed to the registered consumers. One consumer matches events
against indicator-of-compromise (IOC) lists. Further helpers normalise Sigma
severity levels and work out which Sigma detection patterns matched an event.

## Installation

```
pip install .
```

To install the test tools as well:

```
pip install ".[test]"
```

## Modules

- `aurora.enrichment`
  - `DataFieldsMap` is a dict of event fields. It has `value()`, `add_field()`,
    `rename_field()` and `string_items()`. `value()` returns a `DataValue`
    with `valid` and `string`; a `None` value counts as unset.
  - `EventEnricher` runs the callbacks registered for a `provider:event_id`
    key, in registration order.
  - `Correlator(size)` is a thread-safe LRU cache of `ProcessInfo` keyed by
    PID. A size of zero or less raises `ValueError`. `len()` gives the number
    of entries.
- `aurora.events`
  - `EventIdentifier` holds `provider_name` and `event_id`.
  - `Event` is the abstract event interface.
  - `FieldsEvent(provider_name, event_id, fields, process, source, time)` is
    an event backed by a `DataFieldsMap` in its `fields` attribute.
- `aurora.distributor`
  - `Distributor(enricher, correlator)` enriches each event and caches
    process-creation events (event ID 1) in the correlator. It then passes the
    event to every registered `EventConsumer`. An exception raised by one
    consumer is logged and does not stop the others. The `processed` property
    counts the handled events.
  - `register_linux_enrichments(enricher, correlator)` registers enrichments
    for the keys `LinuxEBPF:1`, `LinuxEBPF:3` and `LinuxEBPF:11`. They fill
    `ParentImage` and `ParentCommandLine`, or `Image`, from the correlator when
    those fields are missing or empty.
- `aurora.ioc_sources`
  - `load_filename_iocs(path, required)` reads lines of the form
    `REGEX;SCORE[;FALSE_POSITIVE_REGEX]` and drops duplicate entries.
  - `load_c2_iocs(path, required)` reads one domain or IP address per line,
    with an optional `;SCORE`. The default score is 80. It returns
    `(domains, ips)`.
  - Blank lines and `#` comments are ignored. Malformed lines are skipped with
    a warning. A required file that cannot be opened raises
    `MissingIOCSourceError`.
- `aurora.ioc`
  - `IOCConsumer(IOCConfig(...))` loads both lists in `initialize()`.
  - It checks `Image`, `ParentImage`, `TargetFilename`, `CommandLine` and
    `ParentCommandLine` against the filename IOCs. It checks `DestinationIp`
    and `DestinationHostname` against the C2 IOCs.
  - Each match is logged as `"IOC match"`, with the details in the record's
    `fields` attribute. The log level comes from `score_to_level(score)`.
    The `matches` property counts the matches.
  - Values of sensitive fields, and secrets inside command lines, are replaced
    by `[REDACTED]` (`sanitize_field_for_logging`).
  - Paths left empty in the config fall back to
    `resources/iocs/filename-iocs.txt` and `resources/iocs/c2-iocs.txt` next to
    the running program. A missing fallback file only disables that list.
- `aurora.levels`
  - `normalize_sigma_level` returns the normalised level and its priority.
    `informational` is read as `info`.
  - `is_valid_min_level` tells whether a level is one of the supported Sigma
    severities.
  - `passes_min_level` filters rule levels by a minimum priority.
  - `sigma_rule_level_to_log_level` maps a Sigma level to a `logging` level.
- `aurora.matchers`
  - `new_string_matcher(modifier, lowercase, match_all, no_collapse_ws,
    *patterns)` builds the matcher for one or more patterns. The matcher types
    are `ContentPattern`, `PrefixPattern`, `SuffixPattern`, `RegexPattern`,
    `GlobPattern`, `StringMatchers` and `StringMatchersConj`.
  - `NumPattern` and `NumMatchers` match integers.
- `aurora.matchdetails`
  - `extract_detection_field_patterns` collects the patterns of a detection
    section, keyed by lower-case field name.
  - `RuleMetadata.matching_rule_patterns` lists the patterns that match an
    event value.
  - `format_match_evidence` turns matches into the sorted field list, the
    patterns for each field, and strings like `'/whoami' in Image`.
  - `read_rule_date_metadata` reads `date` and `modified` from a rule file.

## Example

```python
from aurora.distributor import Distributor, register_linux_enrichments
from aurora.enrichment import Correlator, EventEnricher
from aurora.events import FieldsEvent
from aurora.ioc import IOCConfig, IOCConsumer

correlator = Correlator(1024)
enricher = EventEnricher()
register_linux_enrichments(enricher, correlator)

consumer = IOCConsumer(IOCConfig(filename_ioc_path="filename-iocs.txt",
                                 filename_ioc_required=True))
consumer.initialize()

dist = Distributor(enricher, correlator)
dist.register_consumer(consumer)
dist.handle_event(FieldsEvent("LinuxEBPF", 11, {"TargetFilename": "/tmp/evil.sh"}))
print(dist.processed, consumer.matches)
```

## What it does not do

- There are no event providers: events have to be built by the caller, for
  example as `FieldsEvent`s.
- There is no Sigma rule engine. No consumer loads Sigma rules and evaluates
  events against them. The package provides the level helpers, the matchers
  and the match-evidence helpers.
- There is no command-line program. Everything is used as a library.

## Running the tests

```
pytest
```