"""
Subject names are ``.`` separated tokens, e.g. ``session.status``.

Subscription patterns may use ``*`` to match exactly one token and a
trailing ``>`` to match one or more remaining tokens.
"""


def split_subject(subject: str) -> list[str]:
    return subject.split(".")


def validate_subject(subject: str, allow_wildcards: bool = False) -> None:
    if not subject:
        raise ValueError("Subject may not be empty")

    tokens = split_subject(subject)
    for idx, token in enumerate(tokens):
        if token == "":
            raise ValueError(f"Subject '{subject}' has an empty token")

        if token in ("*", ">"):
            if not allow_wildcards:
                raise ValueError(f"Subject '{subject}' may not contain wildcards")

            if token == ">" and idx != len(tokens) - 1:
                raise ValueError(f"'>' must be the last token of '{subject}'")


def subject_matches(pattern: str, subject: str) -> bool:
    pattern_tokens = split_subject(pattern)
    subject_tokens = split_subject(subject)

    for idx, token in enumerate(pattern_tokens):
        if token == ">":
            return len(subject_tokens) > idx

        if idx >= len(subject_tokens):
            return False

        if token != "*" and token != subject_tokens[idx]:
            return False

    return len(pattern_tokens) == len(subject_tokens)
