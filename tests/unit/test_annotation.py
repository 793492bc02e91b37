"""Unit tests for marker-score annotation."""

import json

import pytest
import numpy as np
import pandas as pd
from scipy import sparse

from subclone_scout.core.annotation import (
    AnnotationConfig,
    AnnotationEngine,
    DEFAULT_MARKER_SETS,
    MarkerSet,
    load_marker_sets,
    majority_labels,
    read_marker_map,
    resolve_labels,
    score_gene_sets,
)
from subclone_scout.errors import ConfigurationError, EmptyGeneSetError


def _two_set_adata(n_per_cluster: int = 30, tied_cluster: bool = False, seed: int = 0):
    """Cluster 0 expresses g1/g2, cluster 1 expresses g3/g4, background elsewhere.

    With ``tied_cluster`` a third cluster expresses all four genes equally.
    """
    import anndata as ad

    rng = np.random.default_rng(seed)
    genes = ["g1", "g2", "g3", "g4"] + [f"bg{i}" for i in range(40)]
    n_clusters = 3 if tied_cluster else 2
    n_cells = n_per_cluster * n_clusters

    X = rng.uniform(0.0, 0.5, size=(n_cells, len(genes)))
    X[:, :4] = 0.0
    clusters = np.repeat([str(i) for i in range(n_clusters)], n_per_cluster)
    X[clusters == "0", 0:2] = 4.0
    X[clusters == "1", 2:4] = 4.0
    if tied_cluster:
        X[clusters == "2", 0:4] = 2.0

    obs = pd.DataFrame(
        {"cluster": pd.Categorical(clusters)},
        index=[f"cell_{i}" for i in range(n_cells)],
    )
    adata = ad.AnnData(
        X=X.astype(np.float32),
        obs=obs,
        var=pd.DataFrame({"gene_symbol": genes}, index=genes),
    )
    adata.layers["lognorm"] = sparse.csr_matrix(X.astype(np.float32))
    return adata


TWO_SETS = {"A": ["g1", "g2"], "B": ["g3", "g4"]}


class TestAnnotationConfig:
    """Tests for AnnotationConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = AnnotationConfig()
        assert config.method == "module"
        assert config.layer == "lognorm"
        assert config.level == "cluster"
        assert config.ambiguous_label == "Ambiguous"

    def test_invalid_level(self):
        """Unknown annotation levels are rejected."""
        with pytest.raises(ConfigurationError):
            AnnotationConfig(level="sample").validate()


class TestMarkerLoading:
    """Tests for marker set loading and resolution."""

    def test_default_marker_sets(self):
        """Built-in sets include the usual reference populations."""
        assert "T cells" in DEFAULT_MARKER_SETS
        assert "B cells" in DEFAULT_MARKER_SETS
        assert all(DEFAULT_MARKER_SETS.values())

    def test_case_insensitive_resolution(self):
        """Symbols resolve regardless of case; missing ones are kept apart."""
        sets = load_marker_sets({"A": ["G1", "g2", "ABSENT"]}, ["g1", "g2", "g3"])
        assert sets[0].resolved_markers == ("g1", "g2")
        assert sets[0].missing_markers == ("ABSENT",)

    def test_resolution_through_gene_symbols(self):
        """Unique-ified var_names resolve through var['gene_symbol']."""
        sets = load_marker_sets(
            {"A": ["CD3D"]}, var_names=["ENSG01", "ENSG02"], gene_symbols=["CD3D", "CD8A"]
        )
        assert sets[0].resolved_markers == ("ENSG01",)

    def test_read_yaml_marker_map(self, tmp_path):
        """YAML files may nest sets under marker_sets and use markers nodes."""
        path = tmp_path / "markers.yaml"
        path.write_text(
            "marker_sets:\n"
            "  A: [g1, g2]\n"
            "  B:\n"
            "    markers: [g3]\n"
            "  _comment: ignored\n"
        )
        assert read_marker_map(path) == {"A": ["g1", "g2"], "B": ["g3"]}

    def test_read_json_marker_map(self, tmp_path):
        """JSON marker maps load the same way."""
        path = tmp_path / "markers.json"
        path.write_text(json.dumps(TWO_SETS))
        assert read_marker_map(path) == TWO_SETS

    def test_invalid_marker_map(self, tmp_path):
        """A marker map that is not a mapping is a configuration error."""
        path = tmp_path / "markers.yaml"
        path.write_text("- g1\n- g2\n")
        with pytest.raises(ConfigurationError):
            read_marker_map(path)


class TestScoring:
    """Tests for gene-set scoring."""

    def test_mean_scores(self):
        """Mean scores are plain averages of the set genes."""
        adata = _two_set_adata()
        sets = load_marker_sets(TWO_SETS, adata.var_names)
        scores = score_gene_sets(adata, sets, method="mean")

        assert list(scores.columns) == ["A", "B"]
        assert scores.loc["cell_0", "A"] == pytest.approx(4.0)
        assert scores.loc["cell_0", "B"] == pytest.approx(0.0)

    def test_module_scores_favor_expressed_set(self):
        """Background-corrected scores rank the expressed set first."""
        adata = _two_set_adata()
        sets = load_marker_sets(TWO_SETS, adata.var_names)
        scores = score_gene_sets(adata, sets, method="module", ctrl_size=10, n_bins=5)

        in_zero = adata.obs["cluster"] == "0"
        assert (scores.loc[in_zero.to_numpy(), "A"] > scores.loc[in_zero.to_numpy(), "B"]).all()

    def test_empty_gene_set_raises(self):
        """A set with no genes present raises instead of scoring zero."""
        adata = _two_set_adata()
        sets = load_marker_sets({"A": ["g1"], "Ghost": ["NOPE1", "NOPE2"]}, adata.var_names)
        with pytest.raises(EmptyGeneSetError) as exc_info:
            score_gene_sets(adata, sets, method="mean")
        assert "Ghost" in str(exc_info.value)
        assert isinstance(exc_info.value, ConfigurationError)

    def test_missing_layer(self):
        """Scoring an absent layer is a configuration error."""
        adata = _two_set_adata()
        sets = [MarkerSet("A", ("g1",), ("g1",), ())]
        with pytest.raises(ConfigurationError):
            score_gene_sets(adata, sets, layer="scaled")


class TestResolveLabels:
    """Tests for the tie policy."""

    def test_clear_winner(self):
        """The highest score wins with its margin reported."""
        scores = pd.DataFrame({"A": [2.0], "B": [0.5]}, index=["0"])
        table = resolve_labels(scores)
        row = table.loc["0"]
        assert row["assigned_label"] == "A"
        assert row["runner_up"] == "B"
        assert row["margin"] == pytest.approx(1.5)
        assert row["resolution"] == "score"
        assert not row["is_tie"]

    def test_tie_keeps_prior_label(self):
        """A tie resolves to the prior label when it is among the tied."""
        scores = pd.DataFrame({"A": [1.0], "B": [1.0], "C": [0.2]}, index=["0"])
        table = resolve_labels(scores, prior_labels={"0": "B"})
        assert table.loc["0", "assigned_label"] == "B"
        assert table.loc["0", "resolution"] == "prior"
        assert table.loc["0", "margin"] == 0.0

    def test_tie_without_usable_prior_is_ambiguous(self):
        """A tie the prior cannot resolve gets the ambiguous label."""
        scores = pd.DataFrame({"A": [1.0, 1.0], "B": [1.0, 1.0]}, index=["0", "1"])
        table = resolve_labels(scores, prior_labels={"1": "C"}, ambiguous_label="Unresolved")
        assert table["assigned_label"].tolist() == ["Unresolved", "Unresolved"]
        assert table["resolution"].tolist() == ["ambiguous", "ambiguous"]
        assert table["is_tie"].all()

    def test_tolerance_defines_tie(self):
        """Scores within the tolerance count as tied."""
        scores = pd.DataFrame({"A": [1.0], "B": [0.99]}, index=["0"])
        assert resolve_labels(scores, tie_tolerance=1e-9).loc["0", "assigned_label"] == "A"
        assert resolve_labels(scores, tie_tolerance=0.05).loc["0", "is_tie"]

    def test_majority_labels(self):
        """Prior label is the most frequent label in each cluster."""
        obs = pd.DataFrame(
            {"cluster": ["0", "0", "0", "1", "1"], "cell_type": ["x", "y", "y", "z", "w"]}
        )
        prior = majority_labels(obs, "cluster", "cell_type")
        assert prior["0"] == "y"
        assert prior["1"] == "w"


class TestAnnotationEngine:
    """Tests for AnnotationEngine."""

    def test_cluster_expressing_set_genes_labeled(self):
        """A cluster expressing only g1 and g2 highly is labeled A."""
        adata = _two_set_adata()
        engine = AnnotationEngine(AnnotationConfig(ctrl_size=10, n_bins=5), marker_sets=TWO_SETS)
        result = engine.run(adata)

        table = result.cluster_annotations.set_index("cluster_id")
        assert table.loc["0", "assigned_label"] == "A"
        assert table.loc["1", "assigned_label"] == "B"
        assert table.loc["0", "n_cells"] == 30
        labels = result.adata.obs["cell_type_auto"]
        assert (labels[adata.obs["cluster"] == "0"] == "A").all()
        assert "score_A" in result.adata.obs.columns
        assert "cell_type_auto_score" in result.adata.obs.columns
        assert result.ambiguous_clusters == []

    def test_input_not_modified(self):
        """The input container gains no label columns."""
        adata = _two_set_adata()
        AnnotationEngine(AnnotationConfig(method="mean"), marker_sets=TWO_SETS).run(adata)
        assert "cell_type_auto" not in adata.obs.columns
        assert "score_A" not in adata.obs.columns

    def test_tied_cluster_keeps_prior(self):
        """A tied cluster keeps the majority prior label when it is a candidate."""
        adata = _two_set_adata(tied_cluster=True)
        adata.obs["cell_type"] = np.where(adata.obs["cluster"] == "2", "B", "A")
        result = AnnotationEngine(AnnotationConfig(method="mean"), marker_sets=TWO_SETS).run(adata)

        table = result.label_table.set_index("cluster_id")
        assert table.loc["2", "assigned_label"] == "B"
        assert table.loc["2", "resolution"] == "prior"
        assert result.ambiguous_clusters == []

    def test_tied_cluster_without_prior_is_reported(self):
        """A tie with no prior column becomes Ambiguous and is reported."""
        adata = _two_set_adata(tied_cluster=True)
        result = AnnotationEngine(AnnotationConfig(method="mean"), marker_sets=TWO_SETS).run(adata)

        table = result.label_table.set_index("cluster_id")
        assert table.loc["2", "assigned_label"] == "Ambiguous"
        assert result.ambiguous_clusters == ["2"]
        assert result.adata.uns["annotation"]["n_ambiguous"] == 1

    def test_cell_level(self):
        """Per-cell labeling produces one row per cell."""
        adata = _two_set_adata()
        config = AnnotationConfig(method="mean", level="cell")
        result = AnnotationEngine(config, marker_sets=TWO_SETS).run(adata)

        assert len(result.label_table) == adata.n_obs
        assert result.label_table["cell_id"].tolist() == list(adata.obs_names)
        assert result.adata.obs.loc["cell_0", "cell_type_auto"] == "A"
        assert result.cluster_annotations is None

    def test_missing_cluster_key(self):
        """Cluster-level annotation without clusters is a configuration error."""
        adata = _two_set_adata()
        del adata.obs["cluster"]
        with pytest.raises(ConfigurationError):
            AnnotationEngine(AnnotationConfig(method="mean"), marker_sets=TWO_SETS).run(adata)

    def test_marker_file(self, tmp_path):
        """Marker sets can be given as a file path."""
        path = tmp_path / "markers.yaml"
        path.write_text("A: [g1, g2]\nB: [g3, g4]\n")
        adata = _two_set_adata()
        result = AnnotationEngine(AnnotationConfig(method="mean"), marker_sets=path).run(adata)
        assert set(result.label_table["assigned_label"]) == {"A", "B"}

    def test_summary(self):
        """to_dict reports ties and label counts."""
        adata = _two_set_adata(tied_cluster=True)
        result = AnnotationEngine(AnnotationConfig(method="mean"), marker_sets=TWO_SETS).run(adata)
        summary = result.to_dict()
        assert summary["n_units"] == 3
        assert summary["n_ties"] == 1
        assert summary["ambiguous"] == ["2"]
