import pytest
from clickhouse_connect.driver.exceptions import DatabaseError, OperationalError

from app.integrations.clickhouse import ClickHouseClient, ClickHouseError, error_code

URLS = ["http://ch-1:8123", "http://ch-2:8123"]


class _Result:
    def __init__(self, rows):
        self.rows = rows

    def named_results(self):
        return iter(self.rows)


class _Driver:
    """Stands in for one driver client; plays back queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def query(self, sql, parameters=None):
        self.calls.append((sql, parameters))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _Result(outcome)


def _client(drivers: dict, **kwargs) -> ClickHouseClient:
    def _factory(url):
        driver = drivers[url]
        if isinstance(driver, Exception):
            raise driver
        return driver

    return ClickHouseClient(URLS, client_factory=_factory, **kwargs)


def test_query_returns_named_rows() -> None:
    driver = _Driver([{"vinno": "V1", "speed": 40}, {"vinno": "V2", "speed": 0}])
    client = _client({URLS[0]: driver})

    sql = "SELECT vinno, speed FROM t WHERE vinno IN {ids:Array(String)}"
    rows = client.query(sql, {"ids": ["V1", "V'2"]})

    assert rows == [{"vinno": "V1", "speed": 40}, {"vinno": "V2", "speed": 0}]
    assert driver.calls == [(sql, {"ids": ["V1", "V'2"]})]


def test_connection_failure_moves_to_next_server() -> None:
    first = _Driver(OperationalError("HTTPDriver for http://ch-1:8123 connection refused"))
    second = _Driver([{"x": 1}])
    client = _client({URLS[0]: first, URLS[1]: second})

    assert client.query("SELECT 1 AS x") == [{"x": 1}]
    assert len(first.calls) == 1
    assert client.current_url == URLS[1]


def test_unreachable_server_at_connect_moves_on() -> None:
    client = _client({URLS[0]: OperationalError("refused"), URLS[1]: _Driver([{"x": 1}])})
    assert client.query("SELECT 1 AS x") == [{"x": 1}]


def test_all_servers_down() -> None:
    client = _client({URLS[0]: _Driver(OperationalError("refused")), URLS[1]: OperationalError("timed out")})
    with pytest.raises(ClickHouseError, match="All ClickHouse endpoints failed"):
        client.query("SELECT 1")


UNKNOWN_TABLE = "HTTPDriver for http://ch-1:8123 received ClickHouse error code 60\n Code: 60. DB::Exception: Table lmmdata.geoalertdata_1 does not exist. (UNKNOWN_TABLE)"


def test_missing_table_is_empty() -> None:
    client = _client({URLS[0]: _Driver(DatabaseError(UNKNOWN_TABLE))})
    assert client.query("SELECT * FROM geoalertdata_1") == []


def test_missing_table_can_be_an_error() -> None:
    client = _client({URLS[0]: _Driver(DatabaseError(UNKNOWN_TABLE))})
    with pytest.raises(ClickHouseError) as exc:
        client.query("SELECT * FROM geoalertdata_1", allow_missing_table=False)
    assert exc.value.code == 60


def test_other_server_errors_are_raised() -> None:
    error = DatabaseError("HTTPDriver for http://ch-1:8123 received ClickHouse error code 62\n Syntax error")
    client = _client({URLS[0]: _Driver(error), URLS[1]: _Driver([])})
    with pytest.raises(ClickHouseError) as exc:
        client.query("SELEC 1")
    assert exc.value.code == 62
    # server errors do not trigger failover
    assert client.current_url == URLS[0]


@pytest.mark.parametrize(
    "message, code",
    [
        (UNKNOWN_TABLE, 60),
        ("Code: 81. DB::Exception: Database missing. (UNKNOWN_DATABASE)", 81),
        ("connection reset", None),
    ],
)
def test_error_code(message, code) -> None:
    assert error_code(DatabaseError(message)) == code


def test_connection_check(caplog) -> None:
    healthy = _client({URLS[0]: _Driver([{"1": 1}])})
    assert healthy.check_connection() is True

    down = _client({URLS[0]: OperationalError("a"), URLS[1]: OperationalError("b")})
    assert down.check_connection() is False
    assert any("connection check failed" in rec.message for rec in caplog.records)


def test_client_needs_a_server() -> None:
    with pytest.raises(ValueError):
        ClickHouseClient([])
