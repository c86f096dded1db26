import pytest
import requests

pytest.importorskip("playwright")
pytest.importorskip("playwright_stealth")

from globecrawl.main import parse_args, ping_healthcheck
from globecrawl.progress import PassReport


def test_parse_args_acquire_ids_with_regions() -> None:
    args = parse_args(["acquire", "ids", "--regions", "france, japan,"])
    assert args.command == "acquire"
    assert args.target == "ids"
    assert args.regions == ["france", "japan"]
    assert args.resume is True


def test_parse_args_defaults() -> None:
    args = parse_args(["acquire", "all"])
    assert args.regions is None
    assert args.config is None


def test_parse_args_no_resume_and_config() -> None:
    args = parse_args(["acquire", "titles", "--no-resume", "--config", "crawl.yml"])
    assert args.resume is False
    assert args.config == "crawl.yml"


def test_parse_args_discover_genres() -> None:
    args = parse_args(["discover", "genres"])
    assert (args.command, args.target) == ("discover", "genres")


@pytest.mark.parametrize(
    "argv",
    [
        ["acquire", "genres"],
        ["discover", "ids"],
        ["travel", "ids"],
        ["acquire"],
    ],
)
def test_parse_args_rejects_invalid_commands(argv) -> None:
    with pytest.raises(SystemExit):
        parse_args(argv)


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class RecordingHttp:
    def __init__(self, status_code: int = 200, error: Exception | None = None) -> None:
        self.status_code = status_code
        self.error = error
        self.calls: list[tuple[str, bytes]] = []

    def post(self, url, data=None, timeout=None, verify=True):
        self.calls.append((url, data))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code)


def _report(name: str, **kwargs) -> PassReport:
    report = PassReport(name, **kwargs)
    report.completed = True
    return report


def test_healthcheck_pings_with_pass_summaries() -> None:
    http = RecordingHttp()
    reports = [_report("ids", units_saved=2), _report("titles", regions_skipped={"r1": "nothing_missing"})]
    assert ping_healthcheck("https://hc.test/abc", reports, http=http) is True
    url, body = http.calls[0]
    assert url == "https://hc.test/abc"
    assert b"pass=ids" in body and b"pass=titles" in body


def test_healthcheck_reports_failed_regions_to_fail_endpoint() -> None:
    http = RecordingHttp()
    reports = [_report("ids", regions_skipped={"r2": "connection_failed"})]
    assert ping_healthcheck("https://hc.test/abc/", reports, http=http) is True
    assert http.calls[0][0] == "https://hc.test/abc/fail"


def test_healthcheck_disabled_or_failing_never_raises() -> None:
    assert ping_healthcheck("", [_report("ids")]) is False
    down = RecordingHttp(error=requests.ConnectionError("refused"))
    assert ping_healthcheck("https://hc.test/abc", [_report("ids")], http=down) is False
    rejected = RecordingHttp(status_code=404)
    assert ping_healthcheck("https://hc.test/abc", [_report("ids")], http=rejected) is False
