"""Tests for the three-tier Capability Resolver."""

import logging
from pathlib import Path

import pytest

from compound_workflow.errors import CapabilityLookupError, ErrorCode, FileOperationError
from compound_workflow.models import UNCATEGORIZED, CapabilityKind, SourceTier
from compound_workflow.resolver import CapabilityResolver

FOO_PROJECT = """\
    ---
    name: foo
    description: "P"
    ---
    Project body
"""

FOO_PACKAGE = """\
    ---
    name: foo
    description: "Q"
    ---
    Package body
"""

PLAN = """\
    ---
    name: plan
    description: Plan a feature
    argument-hint: "[feature description]"
    ---

    # Plan
    Break the work down.
"""


class TestOverride:
    """Test tier precedence."""

    def test_project_beats_package(self, resolver, tiers, write_doc):
        """A name in both project and package tiers resolves to the project copy."""
        write_doc(tiers["project"], "agents/foo.md", FOO_PROJECT)
        write_doc(tiers["package"], "agents/foo.md", FOO_PACKAGE)

        resolved = resolver.resolve()
        assert list(resolved) == ["foo"]
        foo = resolved["foo"]
        assert foo.description == "P"
        assert foo.body.strip() == "Project body"
        assert foo.source_tier is SourceTier.PROJECT

    def test_user_beats_package(self, resolver, tiers, write_doc):
        write_doc(tiers["user"], "workflows/plan.md", PLAN.replace("Plan a feature", "User plan"))
        write_doc(tiers["package"], "workflows/plan.md", PLAN)
        assert resolver.resolve()["plan"].description == "User plan"

    def test_lower_tiers_fill_gaps(self, resolver, tiers, write_doc):
        write_doc(tiers["project"], "workflows/plan.md", PLAN)
        write_doc(tiers["package"], "workflows/work.md", "---\nname: work\ndescription: Do it\n---\n")
        resolved = resolver.resolve()
        assert resolved["plan"].source_tier is SourceTier.PROJECT
        assert resolved["work"].source_tier is SourceTier.PACKAGE

    def test_override_takes_category_too(self, resolver, tiers, write_doc):
        """The winning tier's category replaces the lower tier's."""
        write_doc(tiers["project"], "agents/plan/checker.md", "---\nname: checker\ndescription: P\n---\n")
        write_doc(tiers["package"], "agents/review/checker.md", "---\nname: checker\ndescription: Q\n---\n")
        resolved = resolver.resolve()
        assert list(resolved) == ["checker"]
        assert resolved["checker"].category == "plan"

    def test_override_replaces_every_lower_category(self, resolver, tiers, write_doc):
        """A lower tier holding the name under two categories is fully replaced."""
        write_doc(tiers["package"], "agents/plan/checker.md", "---\ndescription: Q1\n---\n")
        write_doc(tiers["package"], "agents/review/checker.md", "---\ndescription: Q2\n---\n")
        write_doc(tiers["project"], "agents/checker.md", "---\ncategory: work\ndescription: P\n---\n")
        resolved = resolver.resolve()
        assert list(resolved) == ["checker"]
        assert resolved["checker"].category == "work"

    def test_agent_does_not_override_workflow(self, resolver, tiers, write_doc):
        """Workflows and agents are separate namespaces across tiers."""
        write_doc(tiers["project"], "agents/review.md", "---\nname: review\ndescription: Agent\n---\n")
        write_doc(tiers["package"], "workflows/review.md", "---\nname: review\ndescription: Workflow\n---\n")
        resolved = resolver.resolve()
        assert list(resolved) == ["agent:review", "workflow:review"]
        assert [d.description for d in resolved.workflows()] == ["Workflow"]
        assert [d.description for d in resolved.agents()] == ["Agent"]

    def test_same_kind_still_overrides_next_to_other_kind(self, resolver, tiers, write_doc):
        write_doc(tiers["project"], "workflows/review.md", "---\nname: review\ndescription: P\n---\n")
        write_doc(tiers["package"], "workflows/review.md", "---\nname: review\ndescription: Q\n---\n")
        write_doc(tiers["package"], "agents/review/review.md", "---\nname: review\ndescription: A\n---\n")
        resolved = resolver.resolve()
        assert resolved["workflow:review"].description == "P"
        assert resolved["agent:review"].category == "review"


class TestCategoryInference:
    """Test explicit field > directory segment > uncategorized."""

    def test_directory_segment(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/review/x.md", "---\nname: x\ndescription: d\n---\n")
        assert resolver.resolve()["x"].category == "review"

    def test_explicit_field_wins(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/review/x.md", "---\nname: x\ncategory: plan\n---\n")
        assert resolver.resolve()["x"].category == "plan"

    def test_unknown_explicit_falls_back_to_directory(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/review/x.md", "---\ncategory: marketing\n---\n")
        assert resolver.resolve()["x"].category == "review"

    def test_uncategorized(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/x.md", "---\nname: x\n---\n")
        write_doc(tiers["package"], "agents/misc/y.md", "---\nname: y\n---\n")
        resolved = resolver.resolve()
        assert resolved["x"].category == UNCATEGORIZED
        assert resolved["y"].category == UNCATEGORIZED

    def test_workflow_category_from_field(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "workflows/plan.md", "---\nname: plan\ncategory: plan\n---\n")
        assert resolver.resolve()["plan"].category == "plan"

    def test_infer_category_precedence(self, resolver):
        """Explicit field, then nearest known segment, then uncategorized."""
        assert resolver.infer_category("review", ("plan", "agents")) == "review"
        assert resolver.infer_category("", ("misc", "work", "agents")) == "work"
        assert resolver.infer_category("nope", ("misc", "agents")) == UNCATEGORIZED

    def test_custom_categories(self, tiers, write_doc):
        write_doc(tiers["package"], "agents/marketing/x.md", "---\nname: x\n---\n")
        resolver = CapabilityResolver(
            [tiers["project"], tiers["user"], tiers["package"]],
            categories=["marketing"],
        )
        assert resolver.resolve()["x"].category == "marketing"


class TestScanning:
    """Test the directory walk and document loading."""

    def test_kinds_and_metadata(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "workflows/plan.md", PLAN)
        doc = resolver.resolve()["plan"]
        assert doc.kind is CapabilityKind.WORKFLOW
        assert doc.header.argument_hint == "[feature description]"
        assert doc.metadata["name"] == "plan"
        assert Path(doc.source_path).is_absolute()

    def test_logical_name_is_file_stem(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "workflows/compound-plan.md", "---\nname: plan\n---\n")
        resolved = resolver.resolve()
        assert list(resolved) == ["compound-plan"]
        assert resolved["compound-plan"].display_name == "plan"

    def test_ignores_other_extensions_and_deep_nesting(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/notes.txt", "not a document")
        write_doc(tiers["package"], "agents/review/deep/z.md", "---\nname: z\n---\n")
        assert len(resolver.resolve()) == 0

    def test_missing_kind_directory_is_empty(self, tmp_path, write_doc):
        roots = [tmp_path / t for t in ("p", "u", "k")]
        for root in roots:
            root.mkdir()
        write_doc(roots[2], "workflows/plan.md", PLAN)
        assert list(CapabilityResolver(roots).resolve()) == ["plan"]

    def test_document_without_block(self, resolver, tiers, write_doc, caplog):
        """A document without metadata still resolves, with a missing-field warning."""
        write_doc(tiers["package"], "workflows/work.md", "# Work\n\nJust do it.\n")
        with caplog.at_level(logging.WARNING, logger="compound_workflow.resolver"):
            doc = resolver.resolve()["work"]
        assert doc.metadata == {}
        assert doc.body.startswith("# Work")
        assert "missing workflow field(s): name, description" in caplog.text

    def test_workflow_and_agent_share_a_name_in_one_tier(self, resolver, tiers, write_doc, caplog):
        write_doc(tiers["package"], "workflows/plan.md", PLAN)
        write_doc(tiers["package"], "agents/plan.md", "---\nname: plan\ndescription: Agent\n---\n")
        with caplog.at_level(logging.WARNING, logger="compound_workflow.resolver"):
            resolved = resolver.resolve()
        assert [d.name for d in resolved.workflows()] == ["plan"]
        assert [d.name for d in resolved.agents()] == ["plan"]
        assert "Duplicate" not in caplog.text

    def test_blank_stem_is_skipped(self, resolver, tiers, write_doc, error_log):
        """A file whose stem is only whitespace is recorded and skipped."""
        write_doc(tiers["package"], "agents/ .md", "---\nname: blank\n---\n")
        write_doc(tiers["package"], "agents/good.md", "---\nname: good\n---\n")
        assert list(resolver.resolve()) == ["good"]
        assert error_log.by_code() == {"CONFIG_ERROR": 1}

    def test_skip_on_malformed(self, resolver, tiers, write_doc, error_log):
        """An unclosed block is skipped; its siblings still resolve."""
        write_doc(tiers["package"], "agents/review/broken.md", "---\nname: broken\n\nno closing\n")
        write_doc(tiers["package"], "agents/review/good.md", "---\nname: good\ndescription: ok\n---\n")

        resolved = resolver.resolve()
        assert list(resolved) == ["good"]
        assert error_log.by_code() == {"CONFIG_ERROR": 1}

    def test_malformed_override_does_not_hide_lower_tier(self, resolver, tiers, write_doc):
        write_doc(tiers["project"], "agents/foo.md", "---\nname: foo\n")
        write_doc(tiers["package"], "agents/foo.md", FOO_PACKAGE)
        assert resolver.resolve()["foo"].description == "Q"

    def test_same_name_different_categories_in_one_tier(self, resolver, tiers, write_doc):
        """Within a tier, a shared name is kept under qualified keys."""
        write_doc(tiers["package"], "agents/plan/checker.md", "---\ndescription: planning\n---\n")
        write_doc(tiers["package"], "agents/review/checker.md", "---\ndescription: reviewing\n---\n")
        resolved = resolver.resolve()
        assert list(resolved) == ["plan/checker", "review/checker"]

    def test_duplicate_in_same_category_keeps_last(self, resolver, tiers, write_doc, caplog):
        write_doc(tiers["package"], "agents/review/x.md", "---\ndescription: first\n---\n")
        write_doc(tiers["package"], "agents/x.md", "---\ncategory: review\ndescription: second\n---\n")
        with caplog.at_level(logging.WARNING, logger="compound_workflow.resolver"):
            resolved = resolver.resolve()
        assert resolved["x"].description == "first"
        assert "Duplicate agent 'x'" in caplog.text

    def test_missing_root_raises(self, tmp_path, tiers, error_log):
        resolver = CapabilityResolver(
            [tiers["project"], tmp_path / "absent", tiers["package"]],
            error_log=error_log,
        )
        with pytest.raises(FileOperationError) as info:
            resolver.resolve()
        assert info.value.operation == "read"
        assert info.value.context["tier"] == "user"
        assert error_log.records[0].code is ErrorCode.FILE_OPERATION_ERROR

    def test_requires_a_root(self):
        with pytest.raises(ValueError):
            CapabilityResolver([])

    def test_idempotent(self, resolver, tiers, write_doc):
        """Two resolves of unchanged roots are equal and iterate identically."""
        write_doc(tiers["project"], "agents/foo.md", FOO_PROJECT)
        write_doc(tiers["package"], "workflows/plan.md", PLAN)
        write_doc(tiers["user"], "agents/review/x.md", "---\nname: x\n---\n")
        first, second = resolver.resolve(), resolver.resolve()
        assert first == second
        assert list(first.items()) == list(second.items())

    def test_category_filter(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/review/a.md", "---\nname: a\n---\n")
        write_doc(tiers["package"], "agents/plan/b.md", "---\nname: b\n---\n")
        assert list(resolver.resolve("review")) == ["a"]


class TestLookup:
    """Test name lookup."""

    @pytest.fixture
    def populated(self, resolver, tiers, write_doc):
        write_doc(tiers["package"], "agents/plan/checker.md", "---\ndescription: planning\n---\n")
        write_doc(tiers["package"], "agents/review/checker.md", "---\ndescription: reviewing\n---\n")
        write_doc(tiers["package"], "workflows/plan.md", PLAN)
        return resolver

    def test_exact(self, populated):
        assert populated.lookup("plan").kind is CapabilityKind.WORKFLOW

    def test_scoped(self, populated):
        assert populated.lookup("checker", category="review").description == "reviewing"

    def test_scoped_falls_back_to_unscoped(self, populated):
        """A category scope that matches nothing falls back to any category."""
        assert populated.lookup("plan", category="review").name == "plan"

    def test_qualified_name(self, populated):
        assert populated.lookup("plan/checker").description == "planning"

    def test_shared_name_unscoped(self, populated):
        assert populated.lookup("checker").name == "checker"

    def test_miss_lists_roots(self, populated, tiers):
        with pytest.raises(CapabilityLookupError) as info:
            populated.lookup("nope")
        assert info.value.searched_roots == [str(tiers[t]) for t in ("project", "user", "package")]

    def test_miss_is_recorded(self, populated, error_log):
        with pytest.raises(CapabilityLookupError):
            populated.lookup("nope")
        assert error_log.by_code() == {"CAPABILITY_LOOKUP_ERROR": 1}

    def test_kind_qualified_name(self, populated, tiers, write_doc):
        """A bare name shared by both kinds finds the workflow."""
        write_doc(tiers["package"], "agents/plan.md", "---\ndescription: agent plan\n---\n")
        assert populated.lookup("plan").kind is CapabilityKind.WORKFLOW
        assert populated.lookup("agent:plan").description == "agent plan"
        assert populated.lookup("workflow:plan").description == "Plan a feature"

    def test_reuses_resolved_set(self, populated):
        resolved = populated.resolve()
        assert populated.lookup("plan", resolved=resolved) is resolved["plan"]

    def test_exists_and_path_of(self, populated, tiers):
        assert populated.exists("plan") is True
        assert populated.exists("nope") is False
        assert populated.path_of("plan") == str((tiers["package"] / "workflows" / "plan.md").resolve())
        assert populated.path_of("nope") is None

    def test_exists_does_not_record_a_miss(self, populated, error_log):
        assert populated.exists("nope") is False
        assert error_log.records == []

    def test_exists_with_missing_root_raises(self, tmp_path, tiers):
        """A missing root is never mistaken for an absent capability."""
        resolver = CapabilityResolver([tiers["project"], tmp_path / "absent", tiers["package"]])
        with pytest.raises(FileOperationError):
            resolver.exists("plan")
        with pytest.raises(FileOperationError):
            resolver.path_of("plan")


class TestListing:
    def test_list_by_category(self, resolver, tiers, write_doc):
        """Every known category is present, plus uncategorized."""
        write_doc(tiers["package"], "agents/review/a.md", "---\nname: a\n---\n")
        write_doc(tiers["package"], "agents/b.md", "---\nname: b\n---\n")
        grouped = resolver.list_by_category()
        assert list(grouped) == ["plan", "work", "review", "compound", UNCATEGORIZED]
        assert [d.name for d in grouped["review"]] == ["a"]
        assert [d.name for d in grouped[UNCATEGORIZED]] == ["b"]
        assert grouped["plan"] == []

    def test_search_paths(self, tmp_path, tiers):
        resolver = CapabilityResolver([tiers["project"], tmp_path / "absent", tiers["package"]])
        paths = resolver.search_paths()
        assert [p["tier"] for p in paths] == ["project", "user", "package"]
        assert [p["priority"] for p in paths] == [1, 2, 3]
        assert [p["exists"] for p in paths] == [True, False, True]

    def test_from_config(self, tmp_path):
        from compound_workflow.config import CompoundConfig

        config = CompoundConfig(
            project_root=tmp_path,
            user_home=tmp_path / "u",
            package_root=tmp_path / "k",
            extension="txt",
        )
        resolver = CapabilityResolver.from_config(config)
        assert resolver.roots == [tmp_path / ".compound", tmp_path / "u", tmp_path / "k"]
        assert resolver.extension == ".txt"
