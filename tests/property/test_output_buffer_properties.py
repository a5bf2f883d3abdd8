from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from huornvm.transport import OutputBuffer

_CHUNK_CHARS = st.characters(min_codepoint=32, max_codepoint=0x2FF)


@given(
    st.lists(st.text(alphabet=_CHUNK_CHARS, max_size=40), max_size=60),
    st.integers(min_value=1, max_value=120),
    st.integers(min_value=0, max_value=50),
)
def test_buffer_never_exceeds_limit_and_keeps_a_suffix(
    chunks: list[str], max_size: int, trim_slack: int
) -> None:
    buffer = OutputBuffer(max_size=max_size, trim_slack=trim_slack)
    total = ""

    for chunk in chunks:
        buffer.append(chunk)
        total += chunk
        snapshot = buffer.snapshot()
        assert len(snapshot) <= max_size
        assert total.endswith(snapshot)


@given(st.lists(st.text(alphabet=_CHUNK_CHARS, max_size=20), max_size=30))
def test_buffer_below_limit_is_lossless(chunks: list[str]) -> None:
    buffer = OutputBuffer(max_size=10_000, trim_slack=100)

    for chunk in chunks:
        buffer.append(chunk)

    assert buffer.snapshot() == "".join(chunks)


@given(st.text(alphabet=_CHUNK_CHARS, min_size=1, max_size=200), st.integers(min_value=0, max_value=20))
def test_trim_keeps_at_most_limit_minus_slack_after_overflow(text: str, trim_slack: int) -> None:
    max_size = 50
    buffer = OutputBuffer(max_size=max_size, trim_slack=trim_slack)

    trimmed = buffer.append(text)

    if len(text) > max_size:
        assert trimmed >= len(text) - max_size + trim_slack or buffer.snapshot() == ""
        assert len(buffer.snapshot()) <= max(max_size - trim_slack, 0)
    else:
        assert trimmed == 0
