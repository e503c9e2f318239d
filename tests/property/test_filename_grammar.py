"""Property-based tests for the release artifact naming grammar."""

from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from zigmirror.mirror.artifacts import parse_filename
from zigmirror.mirror.errors import InvalidFilename


WORD = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789_", min_size=1, max_size=12)
NUMBER = st.integers(min_value=0, max_value=999).map(str)
HEX = st.text(alphabet="0123456789abcdef", min_size=1, max_size=12)


@st.composite
def versions(draw) -> tuple[str, bool]:
    release = ".".join(draw(st.lists(NUMBER, min_size=3, max_size=3)))
    if draw(st.booleans()):
        return f"{release}-dev.{draw(NUMBER)}+{draw(HEX)}", True
    return release, False


@st.composite
def artifact_names(draw) -> tuple[str, str, bool]:
    version, dev = draw(versions())
    prefix = draw(
        st.one_of(
            st.just("zig"),
            st.just("zig-bootstrap"),
            st.builds(lambda os_name, arch: f"zig-{os_name}-{arch}", WORD, WORD),
        )
    )
    extension = draw(st.sampled_from(["tar.xz", "zip"]))
    signature = draw(st.sampled_from(["", ".minisig"]))
    return f"{prefix}-{version}.{extension}{signature}", version, dev


@given(artifact_names())
def test_generated_names_parse_to_their_version(case: tuple[str, str, bool]) -> None:
    filename, version, dev = case
    identity = parse_filename(filename)
    assert identity.version == version
    assert identity.is_development_build is dev
    prefix = "builds/" if dev else f"download/{version}/"
    assert identity.upstream_path() == prefix + filename


@given(st.text(max_size=64).filter(lambda s: not s.startswith("zig")))
def test_names_without_zig_prefix_are_rejected(filename: str) -> None:
    with pytest.raises(InvalidFilename):
        parse_filename(filename)


@given(
    artifact_names(),
    st.characters(categories=["Nd"]).filter(lambda ch: ch not in "0123456789"),
    st.data(),
)
def test_non_ascii_digits_are_rejected(case: tuple[str, str, bool], digit: str, data) -> None:
    filename, version, _ = case
    start = filename.index(version)
    positions = [start + i for i, ch in enumerate(version) if ch in "0123456789"]
    position = data.draw(st.sampled_from(positions))
    with pytest.raises(InvalidFilename):
        parse_filename(filename[:position] + digit + filename[position + 1 :])


@given(artifact_names(), st.sampled_from(["/", "\\", " ", "\x00", "\n", ".."]))
def test_appended_junk_is_rejected(case: tuple[str, str, bool], junk: str) -> None:
    filename, _, _ = case
    with pytest.raises(InvalidFilename):
        parse_filename(filename + junk)
