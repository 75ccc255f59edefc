"""Tests for the quoted-reply echo filter."""

from chatstream.parsing.echo import positional_similarity, remove_echo


def test_positional_similarity():
    assert positional_similarity("abc", "abd") == 2 / 3
    assert positional_similarity("", "") == 1.0
    assert positional_similarity("abc", "") == 0.0


def test_exact_echo_removed():
    assert remove_echo("How are you?", "how are you") == ""


def test_near_echo_removed():
    assert remove_echo("How are yoo?", "How are you?") == ""


def test_prefix_echo_stripped():
    assert remove_echo("How are you? Fine thanks", "How are you?") == "Fine thanks"


def test_prefix_with_separator():
    assert remove_echo("see you -> tomorrow then", "see you") == "tomorrow then"


def test_quoted_prefix_stripped():
    assert remove_echo('"How are you?" - fine', "How are you?") == "fine"


def test_unrelated_reply_kept():
    assert remove_echo("Totally different", "How are you?") == "Totally different"


def test_empty_original():
    assert remove_echo("reply", "") == "reply"
    assert remove_echo("reply", "?!") == "reply"
