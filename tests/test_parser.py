"""
Tests for extracting tool calls from model output.
"""

from mcp_gateway.parser import ToolCall, parse_tool_calls


def test_single_call():
    assert parse_tool_calls('get_weather(city="Paris")') == [
        ToolCall("get_weather", {"city": "Paris"})
    ]


def test_calls_in_fenced_block_in_order():
    text = (
        "Let me look that up.\n"
        "```tool_code\n"
        'get_weather(city="Paris")\n'
        'get_weather(city="Rome")\n'
        "```\n"
        "One moment."
    )
    calls = parse_tool_calls(text)
    assert [c.arguments["city"] for c in calls] == ["Paris", "Rome"]


def test_only_fenced_regions_scanned_when_present():
    """Prose outside the fence is ignored once a tool_code block exists."""
    text = (
        'You could call get_time(zone="UTC") yourself, but:\n'
        "```tool_code\n"
        'get_weather(city="Oslo")\n'
        "```"
    )
    assert [c.name for c in parse_tool_calls(text)] == ["get_weather"]


def test_unterminated_fence_scans_to_end():
    text = '```tool_code\nget_weather(city="Lima")'
    assert parse_tool_calls(text) == [ToolCall("get_weather", {"city": "Lima"})]


def test_multiple_arguments_and_whitespace():
    calls = parse_tool_calls('get_weather_forecast( location = "London, UK" ,days="3", )')
    assert calls == [ToolCall("get_weather_forecast", {"location": "London, UK", "days": "3"})]


def test_empty_argument_list_inside_fence():
    assert parse_tool_calls("```tool_code\nget_time()\n```") == [ToolCall("get_time", {})]


def test_bare_call_in_prose_is_not_a_call():
    assert parse_tool_calls("If the cache looks stale, call `reset()` to clear it.") == []
    assert parse_tool_calls("Try reset() then get_weather(city=\"Bern\").") == [
        ToolCall("get_weather", {"city": "Bern"})
    ]


def test_qualified_names():
    assert parse_tool_calls('weather:get_weather(city="Nice")')[0].name == "weather:get_weather"


def test_values_with_parentheses_and_commas():
    calls = parse_tool_calls('echo(message="f(x) = a, b)")')
    assert calls == [ToolCall("echo", {"message": "f(x) = a, b)"})]


def test_escaped_quotes_in_values():
    calls = parse_tool_calls(r'echo(message="she said \"hi\"\nbye")')
    assert calls[0].arguments["message"] == 'she said "hi"\nbye'


def test_unquoted_values_are_not_calls():
    assert parse_tool_calls("get_weather(city=Paris)") == []
    assert parse_tool_calls("add(a=1, b=2)") == []


def test_unterminated_string_is_not_a_call():
    assert parse_tool_calls('get_weather(city="Paris)') == []


def test_missing_close_paren_is_not_a_call():
    assert parse_tool_calls('get_weather(city="Paris"') == []


def test_space_before_paren_is_not_a_call():
    assert parse_tool_calls('The weather (city="Paris") is nice') == []


def test_no_calls_in_plain_prose():
    assert parse_tool_calls("Paris is sunny today (about 22 degrees).") == []
    assert parse_tool_calls("") == []
    assert parse_tool_calls(None) == []


def test_bad_call_does_not_hide_later_good_call():
    text = 'get_weather(city=Paris) then get_weather(city="Rome")'
    assert parse_tool_calls(text) == [ToolCall("get_weather", {"city": "Rome"})]


def test_nested_call_yields_inner_call():
    assert parse_tool_calls('outer(inner(x="1"))') == [ToolCall("inner", {"x": "1"})]


def test_expression_round_trips_quotes():
    call = ToolCall("echo", {"message": 'say "hi"'})
    assert call.expression == 'echo(message="say \\"hi\\"")'
    assert parse_tool_calls(call.expression) == [call]
