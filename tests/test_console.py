from coursepilot.console import ConfirmOutcome, page_number, page_separator, parse_confirm_all, show_lines


def test_confirm_all_replies():
    assert parse_confirm_all("y\n") is ConfirmOutcome.YES
    assert parse_confirm_all(" YES ") is ConfirmOutcome.YES
    assert parse_confirm_all("a") is ConfirmOutcome.ALL
    assert parse_confirm_all("all") is ConfirmOutcome.ALL
    assert parse_confirm_all("") is ConfirmOutcome.NO
    assert parse_confirm_all("later") is ConfirmOutcome.NO


def test_page_number_from_attempt_url():
    assert page_number("https://moodle2025.uca.fr/mod/quiz/attempt.php?attempt=9&page=3#q4") == 3
    assert page_number("https://moodle2025.uca.fr/mod/quiz/attempt.php?attempt=9") is None
    assert "Page 2" in page_separator("https://moodle2025.uca.fr/mod/quiz/attempt.php?page=2")


def test_answer_lines_go_to_stdout(capsys):
    show_lines(["Question 1 [single] answer:", "  Selected: 2. Paris"])
    out = capsys.readouterr().out
    assert "  Selected: 2. Paris\n" in out
    show_lines([])
    assert capsys.readouterr().out == ""
