"""
Tests for branch selection.
"""

from dataclasses import replace

import pytest

from amplicon_router.core.exceptions import ConfigurationError
from amplicon_router.routing.branches import BRANCHES, resolve_choice, select_branch
from amplicon_router.routing.catalog import get_stage, stages_in_branch
from amplicon_router.routing.flags import derive_flags


class TestReadsBranch:

    def test_raw_reads(self, make_params):
        assert select_branch(make_params(), "reads").name == "qiime_import"

    def test_imported_artifact(self, make_params):
        params = make_params(q2_imported="demux.qza", fw_primer=None, rv_primer=None)
        assert select_branch(params, "reads").name == "load_imported_artifact"

    @pytest.mark.parametrize("missing", ["fw_primer", "rv_primer", "metadata"])
    def test_raw_reads_require(self, make_params, missing):
        with pytest.raises(ConfigurationError) as exc_info:
            select_branch(make_params(**{missing: None}), "reads")
        assert exc_info.value.config_key == missing

    def test_choice_follows_import_flag(self, make_params):
        params = make_params(q2_imported="demux.qza")
        flags = derive_flags(params)
        assert flags.reasons["import_reads"] == "pre_imported_artifact"
        assert resolve_choice(params, "reads", flags) == "imported"
        assert resolve_choice(params, "reads", replace(flags, import_reads=True)) == "raw"


class TestTruncationBranch:

    def test_estimated_by_default(self, make_params):
        assert select_branch(make_params(), "truncation").name == "estimate_truncation"

    def test_fixed_lengths(self, make_params):
        params = make_params(trunclenf=230, trunclenr=180)
        assert select_branch(params, "truncation").name == "fixed_truncation"

    def test_zero_lengths_are_fixed(self, make_params):
        params = make_params(trunclenf=0, trunclenr=0)
        assert resolve_choice(params, "truncation") == "fixed"

    def test_single_length_rejected(self, make_params):
        with pytest.raises(ConfigurationError, match="given together"):
            make_params(trunclenf=230)


class TestClassifierBranch:

    def test_train_without_classifier(self, make_params):
        assert select_branch(make_params(), "classifier").name == "train_classifier"

    def test_load_supplied_classifier(self, make_params):
        params = make_params(classifier="classifier.qza")
        assert select_branch(params, "classifier").name == "load_classifier"

    def test_loading_needs_no_primers(self, make_params):
        params = make_params(
            classifier="classifier.qza",
            q2_imported="demux.qza",
            fw_primer=None,
            rv_primer=None,
        )
        assert resolve_choice(params, "classifier") == "load"

    def test_training_needs_primers(self, make_params):
        params = make_params(q2_imported="demux.qza", fw_primer=None, rv_primer=None)
        with pytest.raises(ConfigurationError, match="fw_primer"):
            select_branch(params, "classifier")


class TestTaxaFilterBranch:

    def test_filter(self, make_params):
        assert select_branch(make_params(), "taxa_filter").name == "filter_taxa"

    def test_passthrough_when_nothing_excluded(self, make_params):
        stage = select_branch(make_params(exclude_taxa="none"), "taxa_filter")
        assert stage.name == "unfiltered_passthrough"
        assert set(stage.produces) == {"table", "repseqs"}

    def test_passthrough_without_taxonomy(self, make_params):
        stage = select_branch(make_params(skip_taxonomy=True), "taxa_filter")
        assert stage.name == "unfiltered_passthrough"


def test_unknown_branch(make_params):
    with pytest.raises(ConfigurationError, match="Unknown branch"):
        select_branch(make_params(), "nonsense")


@pytest.mark.parametrize("name", sorted(BRANCHES))
def test_alternatives_cover_branch_stages(name):
    branch = BRANCHES[name]
    assert sorted(branch.all_stage_names()) == sorted(s.name for s in stages_in_branch(name))
    for choice in branch.alternatives:
        producers = [
            stage_name for stage_name in branch.stage_names(choice)
            if branch.output in get_stage(stage_name).produces
        ]
        assert len(producers) == 1, (name, choice)
