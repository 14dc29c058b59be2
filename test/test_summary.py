import yaml

from swathproc.record_stream import RecordWriter
from swathproc.records import FLAG_MANUAL, BeamFlag, Comment, OtherRecord, RecordKind
from swathproc.summary import SUMMARY_SUFFIX, summarize, write_summary


def write_line(path, make_ping):
    first = make_ping(time_d=1000.0, lon=10.0, lat=58.0, depth=50.0)
    first.beamflag[0] = FLAG_MANUAL
    first.beamflag[1] = BeamFlag.NULL
    second = make_ping(time_d=1060.0, lon=10.5, lat=58.2, depth=80.0)
    with RecordWriter(str(path)) as writer:
        writer.write_record(RecordKind.COMMENT, Comment('header'))
        writer.write_record(RecordKind.PING, first)
        writer.write_record(RecordKind.NAV, make_ping(time_d=1030.0, nbeams=0, lon=10.2))
        writer.write_record(RecordKind.PING, second)
        writer.write_record(42, OtherRecord(kind=42, payload=b'\x01\x02'))


def test_summarize_counts_and_extents(tmp_path, make_ping):
    path = tmp_path / 'linep.sw'
    write_line(path, make_ping)

    summary = summarize(str(path))

    assert summary['records'] == {'ping': 2, 'nav': 1, 'comment': 1, 'other': 1}
    assert summary['beams'] == {'good': 8, 'flagged': 1, 'null': 1}
    assert summary['time']['duration_s'] == 60.0
    assert summary['time']['start'].startswith('1970-01-01T00:16:40')
    assert summary['longitude'] == {'min': 10.0, 'max': 10.5}
    assert summary['latitude'] == {'min': 58.0, 'max': 58.2}
    assert summary['depth'] == {'min': 50.0, 'max': 80.0}


def test_write_summary_next_to_file(tmp_path, make_ping):
    path = tmp_path / 'linep.sw'
    write_line(path, make_ping)

    inf_path = write_summary(str(path))

    assert inf_path == str(path) + SUMMARY_SUFFIX
    with open(inf_path) as f:
        loaded = yaml.safe_load(f)
    assert loaded['records']['ping'] == 2


def test_empty_file_summary(tmp_path):
    path = tmp_path / 'empty.sw'
    path.write_bytes(b'')

    summary = summarize(str(path))

    assert summary['records']['ping'] == 0
    assert summary['time'] == {'start': None, 'end': None, 'duration_s': 0.0}
    assert summary['depth'] == {'min': None, 'max': None}
