from entry.cli import CLIAdapter


def test_cli_adapter_numbers_requests_per_session():
    cli = CLIAdapter(session_id="abc", skip_cache=True)

    first_text, first = cli.read_input("  top 10 gainers  ")
    _, second = cli.read_input("stocks with low pe")

    assert first_text == "top 10 gainers"
    assert first == {"skip_cache": True, "request_id": "abc-1", "source": "cli"}
    assert second["request_id"] == "abc-2"


def test_cli_adapter_handles_missing_input():
    text, options = CLIAdapter().read_input(None)

    assert text == ""
    assert options["skip_cache"] is False
    assert len(options["request_id"].split("-")[0]) == 8
