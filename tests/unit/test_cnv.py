"""Unit tests for CNV partitioning, export and backends."""

import subprocess

import pytest
import numpy as np
import pandas as pd
from scipy import sparse

from subclone_scout.core.cnv import (
    ANNOTATIONS_FILENAME,
    COUNTS_FILENAME,
    CNVConfig,
    CNVRunner,
    build_bundle,
    build_infercnv_r_script,
    export_bundle,
    load_gene_order,
    partition_cells,
    region_labels,
    round_counts,
)
from subclone_scout.errors import ConfigurationError, EmptyGroupError


class TestCNVConfig:
    """Tests for CNVConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = CNVConfig()
        assert config.reference_groups == ["T cells", "B cells"]
        assert config.decimals == 3
        assert config.cutoff == 0.1
        assert config.denoise is True
        assert config.cluster_by_groups is True
        assert config.hmm is True
        assert config.backend == "infercnvpy"

    def test_unknown_backend(self):
        """Unknown backends are rejected."""
        with pytest.raises(ConfigurationError):
            CNVConfig(backend="copykat").validate()

    def test_overlapping_groups(self):
        """A label cannot be both reference and observation."""
        with pytest.raises(ConfigurationError):
            CNVConfig(reference_groups=["T cells"], observation_groups=["T cells"]).validate()


class TestRoundCounts:
    """Tests for zero-preserving rounding."""

    def test_zero_pattern_preserved(self):
        """Rounding to 3 decimals never flips zero and non-zero entries."""
        rng = np.random.default_rng(0)
        values = rng.exponential(0.01, size=(200, 50))
        values[rng.random(values.shape) < 0.5] = 0.0
        values[0, :5] = [0.0004, 0.00049, 1e-9, 0.0005, 2.0]

        rounded = round_counts(values, decimals=3)

        np.testing.assert_array_equal(rounded == 0, values == 0)
        assert rounded[0, 0] == pytest.approx(0.001)
        assert rounded[0, 2] == pytest.approx(0.001)
        assert rounded[0, 4] == 2.0

    def test_sparse_input(self):
        """Sparse matrices keep their sparsity pattern."""
        matrix = sparse.csr_matrix(np.array([[0.0, 0.0002], [3.14159, 0.0]]))
        rounded = round_counts(matrix, decimals=2)

        assert sparse.issparse(rounded)
        dense = rounded.toarray()
        np.testing.assert_array_equal(dense == 0, matrix.toarray() == 0)
        assert dense[1, 0] == pytest.approx(3.14)
        assert dense[0, 1] == pytest.approx(0.01)

    def test_negative_values(self):
        """Tiny negative values keep their sign."""
        rounded = round_counts(np.array([-0.0001, 0.0]), decimals=3)
        assert rounded[0] == pytest.approx(-0.001)
        assert rounded[1] == 0.0


class TestPartition:
    """Tests for reference/observation partitioning."""

    def test_partition(self, count_adata):
        """Reference labels go to reference, all others to observation."""
        config = CNVConfig(reference_groups=["T cells", "B cells"])
        partition = partition_cells(count_adata, config)

        labels = count_adata.obs["cell_type"]
        assert set(partition.reference) == set(labels.index[labels.isin(["T cells", "B cells"])])
        assert set(partition.observation) == set(labels.index[labels == "Epithelial"])
        assert partition.reference_groups == ["T cells", "B cells"]
        assert sum(partition.group_sizes.values()) == count_adata.n_obs

    def test_explicit_observation_groups(self, count_adata):
        """Cells outside both group lists are left out."""
        config = CNVConfig(reference_groups=["T cells"], observation_groups=["Epithelial"])
        partition = partition_cells(count_adata, config)
        groups = set(partition.groups)
        assert groups == {"T cells", "Epithelial"}

    def test_missing_label_column(self, count_adata):
        """An absent label column is a configuration error."""
        with pytest.raises(ConfigurationError):
            partition_cells(count_adata, CNVConfig(label_key="malignancy"))

    def test_empty_reference(self, count_adata):
        """A reference label with no cells is an empty group."""
        with pytest.raises(EmptyGroupError):
            partition_cells(count_adata, CNVConfig(reference_groups=["NK cells"]))

    def test_missing_reference_label_allowed(self, count_adata):
        """allow_missing_groups tolerates absent labels if one reference remains."""
        config = CNVConfig(reference_groups=["T cells", "NK cells"], allow_missing_groups=True)
        partition = partition_cells(count_adata, config)
        assert partition.reference_groups == ["T cells"]

    def test_empty_observation(self, count_adata):
        """All cells in the reference leaves nothing to observe."""
        config = CNVConfig(reference_groups=["T cells", "B cells", "Epithelial"])
        with pytest.raises(EmptyGroupError):
            partition_cells(count_adata, config)


class TestExport:
    """Tests for the CNV input bundle and its files."""

    def test_bundle_contents(self, count_adata):
        """Counts are genes x cells and annotations map each cell to its group."""
        bundle = build_bundle(count_adata, CNVConfig())

        assert bundle.counts.shape == (count_adata.n_vars, count_adata.n_obs)
        assert list(bundle.counts.index) == list(count_adata.var_names)
        assert list(bundle.annotations.columns) == ["cell", "group"]
        assert list(bundle.annotations["cell"]) == list(bundle.counts.columns)
        expected = count_adata.layers["counts"].toarray().T
        np.testing.assert_allclose(bundle.counts.to_numpy(), expected)

    def test_export_files(self, count_adata, tmp_path):
        """counts.matrix has a header, cell_annotations.txt has none."""
        bundle = build_bundle(count_adata, CNVConfig())
        paths = export_bundle(bundle, tmp_path / "cnv")

        assert paths["counts"].name == COUNTS_FILENAME
        assert paths["annotations"].name == ANNOTATIONS_FILENAME

        counts = pd.read_csv(paths["counts"], sep="\t", index_col=0)
        assert counts.shape == bundle.counts.shape
        assert list(counts.columns) == list(bundle.counts.columns)

        annotations = pd.read_csv(paths["annotations"], sep="\t", header=None)
        assert annotations.shape == (count_adata.n_obs, 2)
        assert annotations.iloc[0, 0] == bundle.annotations.iloc[0, 0]
        assert not list((tmp_path / "cnv").glob(".*"))

    def test_exported_zero_pattern_matches(self, count_adata, tmp_path):
        """Exported values keep the zero pattern of the fractional source."""
        adata = count_adata.copy()
        rng = np.random.default_rng(1)
        dense = adata.layers["counts"].toarray() * rng.uniform(0.0001, 0.002, size=adata.shape)
        adata.layers["counts"] = sparse.csr_matrix(dense)

        bundle = build_bundle(adata, CNVConfig(decimals=3))
        paths = export_bundle(bundle, tmp_path)
        written = pd.read_csv(paths["counts"], sep="\t", index_col=0).to_numpy()
        np.testing.assert_array_equal(written == 0, dense.T == 0)


class TestGeneOrder:
    """Tests for gene order files."""

    def test_load_gene_order(self, tmp_path):
        """Gene order files are gene, chromosome, start, end without header."""
        path = tmp_path / "gene_order.txt"
        path.write_text("CD3D\tchr11\t118338954\t118342744\nEPCAM\tchr2\t47345158\t47387601\n")
        order = load_gene_order(path)
        assert list(order.index) == ["CD3D", "EPCAM"]
        assert order.loc["CD3D", "chromosome"] == "chr11"
        assert order.loc["EPCAM", "start"] == 47345158

    def test_missing_file(self, tmp_path):
        """A missing gene order file is a configuration error."""
        with pytest.raises(ConfigurationError):
            load_gene_order(tmp_path / "absent.txt")

    def test_too_few_columns(self, tmp_path):
        """Gene order rows need four fields."""
        path = tmp_path / "gene_order.txt"
        path.write_text("CD3D\tchr11\n")
        with pytest.raises(ConfigurationError):
            load_gene_order(path)

    def test_region_labels(self):
        """Region labels enumerate windows per chromosome."""
        labels = region_labels({"chr1": 0, "chr2": 3}, 5)
        assert labels == ["chr1:0", "chr1:1", "chr1:2", "chr2:0", "chr2:1"]


class TestCNVRunner:
    """Tests for CNVRunner."""

    def test_empty_group_fails_before_export(self, count_adata, gene_order_file, tmp_path):
        """An empty reference group raises before any file is written."""
        out = tmp_path / "cnv"
        config = CNVConfig(reference_groups=["NK cells"], gene_order_file=str(gene_order_file))
        with pytest.raises(EmptyGroupError):
            CNVRunner(config).run(count_adata, out)
        assert not out.exists()

    def test_missing_gene_order_fails_before_export(self, count_adata, tmp_path):
        """Running without a gene order file raises before exporting."""
        out = tmp_path / "cnv"
        with pytest.raises(ConfigurationError):
            CNVRunner(CNVConfig()).run(count_adata, out)
        assert not out.exists()

    def test_prepare_exports_only(self, count_adata, gene_order_file, tmp_path):
        """prepare writes the backend inputs without running inference."""
        config = CNVConfig(gene_order_file=str(gene_order_file))
        result = CNVRunner(config).prepare(count_adata, tmp_path / "cnv")

        assert result.files["counts"].exists()
        assert result.files["annotations"].exists()
        assert result.files["gene_order"] == gene_order_file
        assert result.cnv_adata is None
        assert result.to_dict()["n_cells"] == count_adata.n_obs

    def test_r_script(self, tmp_path):
        """The R script passes the inference options to infercnv::run."""
        config = CNVConfig(cutoff=0.1, denoise=True, cluster_by_groups=True, hmm=False)
        script = build_infercnv_r_script(
            tmp_path / "counts.matrix",
            tmp_path / "cell_annotations.txt",
            tmp_path / "gene_order.txt",
            tmp_path,
            ["T cells", "B cells"],
            config,
        )
        assert "infercnv::CreateInfercnvObject(" in script
        assert 'ref_group_names = c("T cells", "B cells")' in script
        assert "cutoff = 0.1," in script
        assert "denoise = TRUE," in script
        assert "cluster_by_groups = TRUE," in script
        assert "HMM = FALSE," in script

    def test_r_backend_invokes_rscript(self, count_adata, gene_order_file, tmp_path, monkeypatch):
        """The R backend runs the generated script through Rscript with check=True."""
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append((cmd, kwargs))
            return subprocess.CompletedProcess(cmd, 0, stdout="done\n", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        config = CNVConfig(
            backend="infercnv_r", rscript="/opt/R/bin/Rscript", gene_order_file=str(gene_order_file)
        )
        result = CNVRunner(config).run(count_adata, tmp_path / "cnv")

        assert len(calls) == 1
        cmd, kwargs = calls[0]
        assert cmd == ["/opt/R/bin/Rscript", str(result.files["script"])]
        assert kwargs["check"] is True
        assert result.files["script"].read_text().startswith("suppressPackageStartupMessages")

    def test_r_script_written_atomically(self, count_adata, gene_order_file, tmp_path, monkeypatch):
        """The R script goes through the temp-file writer and leaves no temp files."""
        from subclone_scout.core.cnv import runner as runner_module

        written = []
        real_atomic_write = runner_module.atomic_write

        def recording_atomic_write(path, writer, *args, **kwargs):
            written.append(path.name)
            return real_atomic_write(path, writer, *args, **kwargs)

        monkeypatch.setattr(runner_module, "atomic_write", recording_atomic_write)
        monkeypatch.setattr(
            subprocess, "run", lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 0, "", "")
        )
        config = CNVConfig(backend="infercnv_r", gene_order_file=str(gene_order_file))
        result = CNVRunner(config).run(count_adata, tmp_path / "cnv")

        assert "run_infercnv.R" in written
        assert result.files["script"].exists()
        assert not list(result.output_dir.glob(".run_infercnv.R.*"))

    def test_r_backend_failure_propagates(self, count_adata, gene_order_file, tmp_path, monkeypatch):
        """A failing Rscript run is not swallowed."""

        def failing_run(cmd, **kwargs):
            raise subprocess.CalledProcessError(1, cmd)

        monkeypatch.setattr(subprocess, "run", failing_run)
        config = CNVConfig(backend="infercnv_r", gene_order_file=str(gene_order_file))
        with pytest.raises(subprocess.CalledProcessError):
            CNVRunner(config).run(count_adata, tmp_path / "cnv")

    @pytest.mark.slow
    def test_infercnvpy_backend(self, count_adata, gene_order_file, tmp_path):
        """infercnvpy produces per-cell subclones, scores and region tables."""
        pytest.importorskip("infercnvpy")
        config = CNVConfig(
            reference_groups=["T cells", "B cells"],
            gene_order_file=str(gene_order_file),
            window_size=11,
            hmm=False,
        )
        result = CNVRunner(config).run(count_adata, tmp_path / "cnv")

        assert "X_cnv" in result.cnv_adata.obsm
        assert len(result.cnv_scores) == count_adata.n_obs
        assert result.cnv_scores["subclone"].str.contains("_").all()
        for name in ("cnv_by_region", "cnv_scores", "heatmap"):
            assert result.files[name].exists()

    @pytest.mark.slow
    def test_infercnvpy_leiden_options(self, count_adata, gene_order_file, tmp_path, monkeypatch):
        """CNV-space Leiden uses the igraph implementation like the expression clustering."""
        infercnvpy = pytest.importorskip("infercnvpy")
        seen = {}
        real_leiden = infercnvpy.tl.leiden

        def recording_leiden(adata, **kwargs):
            seen.update(kwargs)
            return real_leiden(adata, **kwargs)

        monkeypatch.setattr(infercnvpy.tl, "leiden", recording_leiden)
        config = CNVConfig(
            reference_groups=["T cells"],
            gene_order_file=str(gene_order_file),
            window_size=11,
            hmm=False,
            random_seed=5,
        )
        CNVRunner(config).run(count_adata, tmp_path / "cnv")

        assert seen["flavor"] == "igraph"
        assert seen["n_iterations"] == 2
        assert seen["directed"] is False
        assert seen["random_state"] == 5
