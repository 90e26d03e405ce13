"""Tests for the command line, config handling, loaders and writers."""

import argparse
import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml

from diffprop.cli import main
from diffprop.cli._validators import (
    _finite_float,
    _n_jobs,
    _non_negative_int,
    _nonzero_float,
    _unit_interval,
)
from diffprop.cli.config import load_config, merge_config_with_args, validate_config
from diffprop.core.errors import InvalidGroupError
from diffprop.loaders import load_counts, load_groups, sniff_delimiter
from diffprop.utils.fileio import atomic_write_csv, atomic_write_json


@pytest.fixture
def data_files(tmp_path, counts_df, groups):
    """Counts and group tables on disk."""
    counts_path = tmp_path / "counts.csv"
    groups_path = tmp_path / "groups.tsv"
    counts_df.to_csv(counts_path)
    pd.DataFrame(
        {"batch": ["x"] * 12, "condition": groups}, index=counts_df.index,
    ).to_csv(groups_path, sep="\t")
    return counts_path, groups_path


class TestValidators:
    """argparse type validators."""

    def test_accepts(self):
        assert _non_negative_int("0") == 0
        assert _n_jobs("-1") == -1
        assert _nonzero_float("0.5") == 0.5
        assert _unit_interval("1") == 1.0
        assert _finite_float("-2.5") == -2.5

    @pytest.mark.parametrize("func, value", [
        (_non_negative_int, "-1"),
        (_n_jobs, "0"),
        (_nonzero_float, "0"),
        (_nonzero_float, "inf"),
        (_unit_interval, "1.5"),
        (_finite_float, "nan"),
    ])
    def test_rejects(self, func, value):
        with pytest.raises(argparse.ArgumentTypeError):
            func(value)


class TestConfig:
    """YAML/JSON config loading, validation and merging."""

    def test_load_yaml_and_json(self, tmp_path):
        config = {"counts": "c.csv", "propd": {"permutations": 20}}
        yml = tmp_path / "run.yaml"
        yml.write_text(yaml.safe_dump(config))
        js = tmp_path / "run.json"
        js.write_text(json.dumps(config))
        assert load_config(yml) == config
        assert load_config(js) == config

    def test_load_errors(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")
        bad = tmp_path / "run.toml"
        bad.write_text("x = 1")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config(bad)
        listing = tmp_path / "list.yaml"
        listing.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="dictionary"):
            load_config(listing)

    def test_empty_file(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("")
        assert load_config(empty) == {}

    @pytest.mark.parametrize("config, message", [
        ({"bogus": 1}, "Unknown config keys"),
        ({"propd": {"bogus": 1}}, "Unknown keys"),
        ({"propd": {"alpha": 0}}, "alpha"),
        ({"propd": {"active": "theta_z"}}, "active"),
        ({"propd": {"active": "theta_mod", "moderated": False}}, "moderated"),
        ({"propd": {"permutations": -3}}, "permutations"),
        ({"propd": {"cutoffs": []}}, "cutoffs"),
        ({"propd": {"pval": 2}}, "pval"),
        ({"propd": {"n_jobs": 0}}, "n_jobs"),
        ({"propr": {"metric": "kendall"}}, "metric"),
    ])
    def test_validate(self, config, message):
        with pytest.raises(ValueError, match=message):
            validate_config(config)

    def test_validate_accepts(self):
        validate_config({
            "counts": "c.csv",
            "propd": {"alpha": 0.5, "permutations": 10, "cutoffs": [0.1, 0.5]},
            "propr": {"metric": "phi"},
        })

    def test_merge_explicit_wins(self):
        args = argparse.Namespace(counts=None, output=Path("out"), permutations=100, seed=None)
        config = {"counts": "c.csv", "output": "cfg_out", "propd": {"permutations": 7, "seed": 3}}
        merged = merge_config_with_args(config, args, "propd", ["--output", "out"])
        assert merged.counts == Path("c.csv")
        assert merged.output == Path("out")
        assert merged.permutations == 7
        assert merged.seed == 3
        assert args.permutations == 100

    def test_merge_short_and_equals_forms(self):
        args = argparse.Namespace(counts=Path("cli.csv"), permutations=5)
        config = {"counts": "c.csv", "propd": {"permutations": 7}}
        merged = merge_config_with_args(config, args, "propd", ["-c", "cli.csv", "--permutations=5"])
        assert merged.counts == Path("cli.csv")
        assert merged.permutations == 5


class TestLoaders:
    """Count and group table loading."""

    def test_load_counts(self, data_files, counts_df):
        counts = load_counts(data_files[0])
        np.testing.assert_array_equal(counts.data, counts_df.to_numpy())
        assert list(counts.feature_ids) == list(counts_df.columns)

    def test_features_as_rows(self, tmp_path, counts_df):
        path = tmp_path / "counts.tsv"
        counts_df.T.to_csv(path, sep="\t")
        assert sniff_delimiter(path) == "\t"
        counts = load_counts(path, features_as_rows=True)
        assert counts.shape == counts_df.shape

    def test_non_numeric(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text(",a,b\ns1,1,x\ns2,2,y\n")
        with pytest.raises(ValueError, match="non-numeric"):
            load_counts(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_counts(tmp_path / "none.csv")

    def test_load_groups(self, data_files, counts_df, groups):
        group = load_groups(data_files[1], counts_df.index[::-1], column="condition")
        np.testing.assert_array_equal(group.labels, groups[::-1])
        assert group.levels == ("B", "A")

    def test_groups_errors(self, data_files, counts_df):
        with pytest.raises(ValueError, match="not found"):
            load_groups(data_files[1], counts_df.index, column="nope")
        with pytest.raises(ValueError, match="no group label"):
            load_groups(data_files[1], list(counts_df.index) + ["s99"], column="condition")
        with pytest.raises(InvalidGroupError):
            load_groups(data_files[1], counts_df.index)


class TestFileIO:
    """Atomic writers."""

    def test_json_numpy_values(self, tmp_path):
        path = tmp_path / "summary.json"
        atomic_write_json(path, {
            "n": np.int64(3), "x": np.float32(0.5), "nan": np.float32("nan"),
            "arr": np.arange(3), "path": tmp_path,
        })
        data = json.loads(path.read_text())
        assert data["n"] == 3 and data["x"] == 0.5 and data["arr"] == [0, 1, 2]
        assert data["nan"] is None
        assert data["path"] == str(tmp_path)

    def test_no_temp_files_left(self, tmp_path):
        atomic_write_json(tmp_path / "a.json", {"x": 1})
        atomic_write_csv(tmp_path / "b.csv", pd.DataFrame({"x": [1, 2]}))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.json", "b.csv"]
        assert (tmp_path / "b.csv").read_text() == "x\n1\n2\n"

    def test_failed_write_cleans_up(self, tmp_path):
        with pytest.raises(TypeError):
            atomic_write_json(tmp_path / "bad.json", {"x": object()})
        assert list(tmp_path.iterdir()) == []


class TestCommands:
    """End-to-end runs of the subcommands."""

    def test_no_command(self):
        assert main([]) == 0

    def test_propd(self, data_files, tmp_path):
        counts_path, groups_path = data_files
        out = tmp_path / "propd_out"
        code = main([
            "propd", "-c", str(counts_path), "-g", str(groups_path),
            "--group-column", "condition", "-o", str(out),
            "--permutations", "5", "--seed", "1", "--fstat", "--cutoffs", "0.5", "0.1",
        ])
        assert code == 0

        results = pd.read_csv(out / "results.csv")
        assert len(results) == 28
        assert {"Partner", "Pair", "theta", "Fstat", "Pval"} <= set(results.columns)
        fdr = pd.read_csv(out / "fdr.csv")
        assert list(fdr["cutoff"]) == [0.1, 0.5]

        summary = json.loads((out / "summary.json").read_text())
        assert summary["permutations"] == 5
        assert summary["group_levels"] == ["A", "B"]
        assert 0 < summary["qtheta"] < 1
        assert len(summary["fdr"]) == 2

    def test_propd_without_permutations(self, data_files, tmp_path):
        counts_path, groups_path = data_files
        out = tmp_path / "p0"
        code = main([
            "propd", "-c", str(counts_path), "-g", str(groups_path),
            "--group-column", "condition", "-o", str(out), "-p", "0",
        ])
        assert code == 0
        assert not (out / "fdr.csv").exists()

    def test_propd_from_config(self, data_files, tmp_path):
        counts_path, groups_path = data_files
        out = tmp_path / "cfg"
        config = tmp_path / "run.yaml"
        config.write_text(yaml.safe_dump({
            "counts": str(counts_path),
            "groups": str(groups_path),
            "group_column": "condition",
            "output": str(out),
            "propd": {"permutations": 3, "seed": 2, "active": "theta_e"},
        }))
        assert main(["propd", "--config", str(config)]) == 0
        summary = json.loads((out / "summary.json").read_text())
        assert summary["active"] == "theta_e"
        assert summary["permutations"] == 3

    def test_propd_theta_mod(self, tmp_path, wide_counts_df, wide_groups):
        counts_path = tmp_path / "wide.csv"
        groups_path = tmp_path / "wide_groups.csv"
        wide_counts_df.to_csv(counts_path)
        pd.DataFrame({"condition": wide_groups}, index=wide_counts_df.index).to_csv(groups_path)
        out = tmp_path / "mod"
        code = main([
            "propd", "-c", str(counts_path), "-g", str(groups_path), "-o", str(out),
            "--moderated", "--active", "theta_mod", "-p", "2", "--seed", "4",
        ])
        assert code == 0
        summary = json.loads((out / "summary.json").read_text())
        assert summary["active"] == "theta_mod"
        assert summary["df_prior"] > 0
        assert len(pd.read_csv(out / "fdr.csv")) == 4

    def test_propd_theta_mod_needs_moderated(self, data_files, tmp_path):
        counts_path, groups_path = data_files
        code = main([
            "propd", "-c", str(counts_path), "-g", str(groups_path),
            "--group-column", "condition", "-o", str(tmp_path / "x"), "--active", "theta_mod",
        ])
        assert code == 2

    def test_propd_missing_inputs(self, tmp_path):
        assert main(["propd", "-o", str(tmp_path / "x")]) == 2

    def test_propd_bad_groups(self, data_files, tmp_path):
        counts_path, groups_path = data_files
        code = main([
            "propd", "-c", str(counts_path), "-g", str(groups_path),
            "--group-column", "batch", "-o", str(tmp_path / "bad"),
        ])
        assert code == 1

    def test_propr(self, data_files, tmp_path):
        out = tmp_path / "propr_out"
        code = main([
            "propr", "-c", str(data_files[0]), "-o", str(out),
            "--metric", "phi", "--reference", "iqlr",
        ])
        assert code == 0
        results = pd.read_csv(out / "results.csv")
        assert list(results.columns) == ["Partner", "Pair", "lrv", "propr"]
        summary = json.loads((out / "summary.json").read_text())
        assert summary["metric"] == "phi"
        assert summary["reference"] == "iqlr"

    def test_propr_feature_reference(self, data_files, tmp_path):
        out = tmp_path / "alr"
        code = main([
            "propr", "-c", str(data_files[0]), "-o", str(out), "--reference", "g1", "g2",
        ])
        assert code == 0
        summary = json.loads((out / "summary.json").read_text())
        assert summary["reference"] == ["g1", "g2"]

    def test_propr_unknown_reference(self, data_files, tmp_path):
        code = main(["propr", "-c", str(data_files[0]), "-o", str(tmp_path / "x"),
                     "--reference", "nope"])
        assert code == 1
