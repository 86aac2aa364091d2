"""Tests for the worker subprocess entry point (fake transpiler)."""

import io
import json
from unittest.mock import MagicMock, patch

import pytest

from strudel_validator.isolation.protocol import encode_message
from strudel_validator.isolation.worker import TRANSPILE_OPTIONS, Worker, main


class FakeSyntaxError(Exception):
    def __init__(self, message, loc=None, location=None):
        super().__init__(message)
        self.loc = loc
        self.location = location


def _run_worker(input_lines: list[str], transpile=None) -> list[dict]:
    """Run the worker with canned stdin and capture stdout."""
    captured_stdout = io.StringIO()
    if transpile is None:
        transpile = MagicMock()

    with patch("sys.stdin", io.StringIO("".join(input_lines))), \
         patch("sys.stdout", captured_stdout):
        Worker(transpile).run()

    output = captured_stdout.getvalue()
    return [json.loads(line) for line in output.split("\n") if line]


class TestWorkerLoop:
    def test_ready_is_first_line(self):
        responses = _run_worker([])
        assert responses == [{"ready": True}]

    def test_ping(self):
        responses = _run_worker(['{"type":"ping","id":1}\n'])
        assert responses[1] == {"id": 1, "pong": True}

    def test_ping_ignores_other_fields(self):
        responses = _run_worker([encode_message({"type": "ping", "id": "a", "code": "x"})])
        assert responses[1] == {"id": "a", "pong": True}

    def test_unknown_type(self):
        responses = _run_worker(['{"type":"explode","id":5}\n'])
        assert responses[1] == {"id": 5, "error": "unknown request type"}

    def test_missing_type(self):
        responses = _run_worker(['{"id":6}\n'])
        assert responses[1] == {"id": 6, "error": "unknown request type"}

    def test_malformed_line_has_no_id(self):
        responses = _run_worker(["not json\n"])
        assert set(responses[1]) == {"error"}
        assert responses[1]["error"].startswith("parse error: ")

    def test_non_object_json_is_parse_error(self):
        responses = _run_worker(["[1, 2]\n"])
        assert set(responses[1]) == {"error"}
        assert responses[1]["error"].startswith("parse error: ")

    def test_continues_after_bad_lines(self):
        responses = _run_worker([
            "not json\n",
            "\n",
            '{"type":"explode","id":1}\n',
            '{"type":"ping","id":2}\n',
        ])
        assert len(responses) == 5
        assert responses[-1] == {"id": 2, "pong": True}

    def test_one_response_per_line_in_order(self):
        lines = [encode_message({"type": "ping", "id": i}) for i in range(10)]
        responses = _run_worker(lines)
        assert [r["id"] for r in responses[1:]] == list(range(10))

    def test_last_line_without_newline(self):
        responses = _run_worker(['{"type":"ping","id":9}'])
        assert responses[1] == {"id": 9, "pong": True}

    def test_deeply_nested_line_is_parse_error(self):
        responses = _run_worker(["[" * 100000 + "\n", '{"type":"ping","id":2}\n'])
        assert len(responses) == 3
        assert set(responses[1]) == {"error"}
        assert responses[1]["error"].startswith("parse error: ")
        assert responses[2] == {"id": 2, "pong": True}

    def test_nan_id_is_parse_error(self):
        responses = _run_worker(['{"type":"ping","id":NaN}\n'])
        assert set(responses[1]) == {"error"}
        assert responses[1]["error"].startswith("parse error: ")


class TestValidate:
    def test_valid_code(self):
        transpile = MagicMock()
        responses = _run_worker(
            ['{"type":"validate","id":3,"code":"s(\\"bd sd\\")"}\n'], transpile
        )
        assert responses[1] == {"id": 3, "valid": True}
        transpile.assert_called_once_with('s("bd sd")', **TRANSPILE_OPTIONS)

    def test_fixed_options(self):
        assert TRANSPILE_OPTIONS == {
            "wrap_async": True,
            "add_return": True,
            "simple_locs": True,
        }

    @pytest.mark.parametrize(
        "request_line",
        [
            '{"type":"validate","id":2,"code":""}\n',
            '{"type":"validate","id":2,"code":null}\n',
            '{"type":"validate","id":2}\n',
            '{"type":"validate","id":2,"code":42}\n',
            '{"type":"validate","id":2,"code":["s()"]}\n',
        ],
    )
    def test_empty_or_invalid_code_skips_transpiler(self, request_line):
        transpile = MagicMock()
        responses = _run_worker([request_line], transpile)
        assert responses[1] == {"id": 2, "valid": False, "error": "Empty or invalid code"}
        transpile.assert_not_called()

    def test_flat_loc(self):
        transpile = MagicMock(
            side_effect=FakeSyntaxError("Unexpected token", loc={"line": 2, "column": 4})
        )
        result = Worker(transpile).validate("s(")
        assert result == {"valid": False, "error": "Unexpected token", "line": 2, "column": 4}

    def test_nested_location(self):
        transpile = MagicMock(side_effect=FakeSyntaxError(
            "[mini] parse error",
            location={"start": {"line": 1, "column": 7}, "end": {"line": 1, "column": 7}},
        ))
        result = Worker(transpile).validate('s("[bd")')
        assert result["line"] == 1
        assert result["column"] == 7

    def test_flat_loc_wins_over_nested(self):
        transpile = MagicMock(side_effect=FakeSyntaxError(
            "err",
            loc={"line": 3, "column": 1},
            location={"start": {"line": 9, "column": 9}},
        ))
        result = Worker(transpile).validate("x")
        assert (result["line"], result["column"]) == (3, 1)

    def test_coordinates_fall_back_independently(self):
        transpile = MagicMock(side_effect=FakeSyntaxError(
            "err",
            loc={"line": 3},
            location={"start": {"column": 5}},
        ))
        result = Worker(transpile).validate("x")
        assert (result["line"], result["column"]) == (3, 5)

    def test_no_location(self):
        transpile = MagicMock(side_effect=ValueError("weird"))
        result = Worker(transpile).validate("x")
        assert result == {"valid": False, "error": "weird", "line": None, "column": None}

    def test_attribute_style_location(self):
        start = MagicMock(spec=["line", "column"], line=4, column=2)
        location = MagicMock(spec=["start"], start=start)
        transpile = MagicMock(side_effect=FakeSyntaxError("err", location=location))
        result = Worker(transpile).validate("x")
        assert (result["line"], result["column"]) == (4, 2)

    def test_only_message_and_location_surface(self):
        exc = FakeSyntaxError("err", loc={"line": 1, "column": 1})
        exc.extra = "secret"
        result = Worker(MagicMock(side_effect=exc)).validate("x")
        assert set(result) == {"valid", "error", "line", "column"}

    def test_invalid_code_keeps_worker_running(self):
        transpile = MagicMock(side_effect=[FakeSyntaxError("bad"), None])
        responses = _run_worker([
            '{"type":"validate","id":1,"code":"s("}\n',
            '{"type":"validate","id":2,"code":"s()"}\n',
        ], transpile)
        assert responses[1]["valid"] is False
        assert responses[2] == {"id": 2, "valid": True}


class TestMain:
    def test_load_failure_is_fatal(self):
        captured_stdout = io.StringIO()
        with patch("sys.stdin", io.StringIO('{"type":"ping","id":1}\n')), \
             patch("sys.stdout", captured_stdout), \
             patch("strudel_validator.isolation.worker.load_transpiler") as mock_load:
            mock_load.side_effect = ImportError("No module named 'esprima'")
            with pytest.raises(SystemExit) as excinfo:
                main()

        assert excinfo.value.code == 1
        lines = [line for line in captured_stdout.getvalue().split("\n") if line]
        assert len(lines) == 1
        msg = json.loads(lines[0])
        assert msg["fatal"] is True
        assert "esprima" in msg["error"]

    def test_eof_exits_zero(self):
        captured_stdout = io.StringIO()
        with patch("sys.stdin", io.StringIO('{"type":"ping","id":1}\n')), \
             patch("sys.stdout", captured_stdout), \
             patch("strudel_validator.isolation.worker.load_transpiler") as mock_load:
            mock_load.return_value = MagicMock()
            with pytest.raises(SystemExit) as excinfo:
                main()

        assert excinfo.value.code == 0
        responses = [json.loads(line) for line in captured_stdout.getvalue().split("\n") if line]
        assert responses == [{"ready": True}, {"id": 1, "pong": True}]


class TestWithRealTranspiler:
    def _worker(self):
        from strudel_validator.isolation.worker import load_transpiler

        return Worker(load_transpiler())

    def test_valid_pattern(self):
        assert self._worker().validate('s("bd sd")') == {"valid": True}

    def test_js_syntax_error(self):
        result = self._worker().validate('s("bd sd"')
        assert result["valid"] is False
        assert result["error"]
        assert isinstance(result["line"], int)
        assert isinstance(result["column"], int)

    def test_mini_notation_error(self):
        result = self._worker().validate('s("bd [sd hh")')
        assert result["valid"] is False
        assert result["error"].startswith("[mini]")
        assert (result["line"], result["column"]) == (1, 13)
