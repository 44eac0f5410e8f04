# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.11
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_phases.py

import re

import pytest

from ghe_backup.core.layout import RepositoryShape
from ghe_backup.core.phases import (
    PHASE_ORDER,
    SPECIAL_DIRECTORY_RULES,
    TransferPhase,
    phase_rules,
    render_rules,
    shape_rules,
)


def _glob_regex(pattern: str) -> str:
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return "".join(out)


def first_match(rules, path: str):
    """Small model of rsync's first-match-wins filter.

    Paths are anchored at the transfer root; directories end with '/'.
    Patterns without a slash match the final path component.
    """
    is_dir = path.endswith("/")
    path = path.rstrip("/")
    for rule in rules:
        pattern = rule.pattern
        if pattern.endswith("/") and not is_dir:
            continue
        pattern = pattern.rstrip("/")
        candidate = path if "/" in pattern else path.rsplit("/", 1)[-1]
        if re.fullmatch(_glob_regex(pattern), candidate):
            return rule.action
    return None


NETWORK_REPO = "/a/nw/1b/2c/3d/4711/4711.git"
GIST_REPO = "/b/1b/2c/3d/gist/abc.git"
PLAIN_REPO = "/c/plain.git"


class TestPhaseOrder:
    def test_order(self):
        assert PHASE_ORDER == (
            TransferPhase.AUXILIARY,
            TransferPhase.PACKED_REFS,
            TransferPhase.LOOSE_REFS_AND_LOGS,
            TransferPhase.OBJECTS_AND_PACKS,
        )

    def test_only_objects_uncompressed(self):
        assert [phase.compress for phase in PHASE_ORDER] == [True, True, True, False]


class TestPhaseRules:
    @pytest.mark.parametrize("phase", list(TransferPhase))
    def test_rules_end_with_catch_all_exclude(self, phase):
        rules = phase_rules(phase)
        assert str(rules[-1]) == "- *"
        assert len(set(rules)) == len(rules)

    @pytest.mark.parametrize("phase", list(TransferPhase))
    def test_non_sharded_dirs_excluded_first(self, phase):
        rendered = render_rules(phase_rules(phase)).splitlines()
        assert rendered[:2] == ["- /__*__/", "- /info/"]

    @pytest.mark.parametrize("shape", list(RepositoryShape))
    def test_same_template_for_every_shape(self, shape):
        rules = shape_rules(TransferPhase.PACKED_REFS, shape)
        assert str(rules[-1]) == f"+ {shape.repo_glob}/packed-refs"

    @pytest.mark.parametrize("repo", [NETWORK_REPO, GIST_REPO, PLAIN_REPO])
    def test_auxiliary_selects_metadata_only(self, repo):
        rules = phase_rules(TransferPhase.AUXILIARY)
        assert first_match(rules, f"{repo}/config") == "+"
        assert first_match(rules, f"{repo}/hooks/") == "+"
        assert first_match(rules, f"{repo}/objects/") == "-"
        assert first_match(rules, f"{repo}/refs/") == "-"
        assert first_match(rules, f"{repo}/packed-refs") == "-"
        assert first_match(rules, f"{repo}/logs/") == "-"

    @pytest.mark.parametrize("repo", [NETWORK_REPO, GIST_REPO, PLAIN_REPO])
    def test_packed_refs_selects_one_file(self, repo):
        rules = phase_rules(TransferPhase.PACKED_REFS)
        assert first_match(rules, f"{repo}/packed-refs") == "+"
        assert first_match(rules, f"{repo}/config") == "-"
        assert first_match(rules, f"{repo}/refs/") == "-"

    @pytest.mark.parametrize("repo", [NETWORK_REPO, GIST_REPO, PLAIN_REPO])
    def test_loose_refs_and_logs(self, repo):
        rules = phase_rules(TransferPhase.LOOSE_REFS_AND_LOGS)
        assert first_match(rules, f"{repo}/refs/heads/main") == "+"
        assert first_match(rules, f"{repo}/logs/HEAD") == "+"
        assert first_match(rules, f"{repo}/objects/") == "-"
        assert first_match(rules, f"{repo}/packed-refs") == "-"

    @pytest.mark.parametrize("repo", [NETWORK_REPO, GIST_REPO, PLAIN_REPO])
    def test_objects_skip_temporary_files(self, repo):
        rules = phase_rules(TransferPhase.OBJECTS_AND_PACKS)
        assert first_match(rules, f"{repo}/objects/pack/pack-1.pack") == "+"
        assert first_match(rules, f"{repo}/objects/ab/tmp_obj_123") == "-"
        assert first_match(rules, f"{repo}/refs/") == "-"

    def test_special_dirs_never_in_sharded_phases(self):
        for phase in TransferPhase:
            assert first_match(phase_rules(phase), "/__purgatory__/") == "-"
            assert first_match(phase_rules(phase), "/info/") == "-"


class TestSpecialDirectoryRules:
    def test_nodeload_archives_excluded(self):
        assert first_match(SPECIAL_DIRECTORY_RULES, "/__nodeload_archives__/") == "-"

    def test_special_and_info_included(self):
        assert first_match(SPECIAL_DIRECTORY_RULES, "/__purgatory__/") == "+"
        assert first_match(SPECIAL_DIRECTORY_RULES, "/__purgatory__/a/x.git/HEAD") == "+"
        assert first_match(SPECIAL_DIRECTORY_RULES, "/info/nw-layout") == "+"
        assert first_match(SPECIAL_DIRECTORY_RULES, "/info/lost+found/") == "-"

    def test_sharded_data_excluded(self):
        assert first_match(SPECIAL_DIRECTORY_RULES, "/a/") == "-"
