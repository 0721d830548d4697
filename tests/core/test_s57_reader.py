import json
from pathlib import Path

import pytest
from shapely.geometry import shape

from ogr_fakes import FakeDataset, FakeFeature, FakeGeometry, FakeLayer, square
from openenc.core.s57_reader import (
    ChartMetadata,
    enc_name_from_path,
    extract_coverage_geojson,
    extract_metadata,
    find_enc_directories,
    find_s57_files,
    iter_layer_features,
)


@pytest.fixture
def enc_root(tmp_path: Path) -> Path:
    """ENC_ROOT layout: one directory per cell with base and update files."""
    root = tmp_path / "ENC_ROOT"
    root.mkdir()
    for cell in ("US5FL11M", "US5FL10M"):
        cell_dir = root / cell
        cell_dir.mkdir()
        (cell_dir / f"{cell}.000").touch()
        (cell_dir / f"{cell}.001").touch()
        (cell_dir / f"{cell}.002").touch()
    (root / "US4FL1AM").mkdir()
    (root / "CATALOG.031").touch()
    return root


# --- Discovery ---

def test_find_enc_directories_sorted(enc_root):
    dirs = find_enc_directories(enc_root)
    assert [d.name for d in dirs] == ["US4FL1AM", "US5FL10M", "US5FL11M"]


def test_find_enc_directories_missing_root(tmp_path):
    assert find_enc_directories(tmp_path / "missing") == []


def test_find_s57_files_base_only(enc_root):
    files = find_s57_files(enc_root / "US5FL10M")
    assert [f.name for f in files] == ["US5FL10M.000"]


def test_find_s57_files_empty_and_missing(enc_root):
    assert find_s57_files(enc_root / "US4FL1AM") == []
    assert find_s57_files(enc_root / "NOPE") == []


@pytest.mark.parametrize('path, name', [
    ("ENC_ROOT/US5FL10M/US5FL10M.000", "US5FL10M"),
    (Path("/data/US3CA52M.000"), "US3CA52M"),
    ("US1GC09M", "US1GC09M"),
])
def test_enc_name_from_path(path, name):
    assert enc_name_from_path(path) == name


# --- Layers ---

def test_iter_layer_features_matches_name_case_insensitively():
    f1, f2, f3 = FakeFeature(fid=1), FakeFeature(fid=2), FakeFeature(fid=3)
    dataset = FakeDataset([
        FakeLayer('DEPARE', [f1]),
        FakeLayer('LNDARE', [f2]),
        FakeLayer('depare', [f3]),
    ])
    assert list(iter_layer_features(dataset, 'Depare')) == [f1, f3]


def test_iter_layer_features_absent_layer():
    assert list(iter_layer_features(FakeDataset([FakeLayer('LIGHTS')]), 'SOUNDG')) == []


# --- DSID ---

def test_extract_metadata():
    dataset = FakeDataset([FakeLayer('DSID', [FakeFeature({'DSID_EDTN': '4', 'DSID_UPDN': '12',
                                                           'DSPM_CSCL': 40000})])])
    assert extract_metadata(dataset) == ChartMetadata(edition=4, update_number=12, compilation_scale=40000)


def test_extract_metadata_defaults():
    dataset = FakeDataset([FakeLayer('DSID', [FakeFeature({'DSID_EDTN': 2})])])
    assert extract_metadata(dataset) == ChartMetadata(edition=2, update_number=0, compilation_scale=0)


def test_extract_metadata_without_dsid():
    assert extract_metadata(FakeDataset([])) == ChartMetadata()


# --- M_COVR ---

def test_coverage_union_of_adjacent_polygons():
    dataset = FakeDataset([FakeLayer('M_COVR', [
        FakeFeature({'CATCOV': 1}, square(0, 0)),
        FakeFeature({'CATCOV': 1}, square(1, 0)),
    ])])
    coverage = json.loads(extract_coverage_geojson(dataset))
    assert coverage['type'] == 'Polygon'
    geom = shape(coverage)
    assert geom.area == pytest.approx(2.0)
    assert geom.bounds == pytest.approx((0.0, 0.0, 2.0, 1.0))


def test_coverage_disjoint_polygons_become_multipolygon():
    dataset = FakeDataset([FakeLayer('M_COVR', [
        FakeFeature({'CATCOV': 1}, square(0, 0)),
        FakeFeature({'CATCOV': 1}, square(5, 5)),
    ])])
    coverage = json.loads(extract_coverage_geojson(dataset))
    assert coverage['type'] == 'MultiPolygon'
    assert len(coverage['coordinates']) == 2


def test_coverage_ignores_no_coverage_category():
    dataset = FakeDataset([FakeLayer('M_COVR', [
        FakeFeature({'CATCOV': 1}, square(0, 0)),
        FakeFeature({'CATCOV': 2}, square(0, 0, 10)),
    ])])
    assert shape(json.loads(extract_coverage_geojson(dataset))).area == pytest.approx(1.0)


def test_coverage_absent():
    assert extract_coverage_geojson(FakeDataset([])) is None
    only_catcov_2 = FakeDataset([FakeLayer('M_COVR', [FakeFeature({'CATCOV': 2}, square(0, 0))])])
    assert extract_coverage_geojson(only_catcov_2) is None


def test_coverage_skips_unreadable_geometry():
    dataset = FakeDataset([FakeLayer('M_COVR', [
        FakeFeature({'CATCOV': 1}, FakeGeometry(error=RuntimeError("bad ring"))),
        FakeFeature({'CATCOV': 1}),
        FakeFeature({'CATCOV': 1}, square(3, 3)),
    ])])
    assert shape(json.loads(extract_coverage_geojson(dataset))).bounds == pytest.approx((3.0, 3.0, 4.0, 4.0))


def test_coverage_keeps_valid_polygons_beside_malformed_one():
    two_point_ring = json.dumps({'type': 'Polygon', 'coordinates': [[[5, 5], [6, 6]]]})
    dataset = FakeDataset([FakeLayer('M_COVR', [
        FakeFeature({'CATCOV': 1}, square(0, 0)),
        FakeFeature({'CATCOV': 1}, two_point_ring),
    ])])
    geom = shape(json.loads(extract_coverage_geojson(dataset)))
    assert geom.bounds == pytest.approx((0.0, 0.0, 1.0, 1.0))


def test_coverage_repairs_invalid_polygon():
    bowtie = json.dumps({'type': 'Polygon', 'coordinates': [[[0, 0], [2, 2], [2, 0], [0, 2], [0, 0]]]})
    dataset = FakeDataset([FakeLayer('M_COVR', [FakeFeature({'CATCOV': 1}, bowtie)])])
    geom = shape(json.loads(extract_coverage_geojson(dataset)))
    assert geom.is_valid
    assert geom.area == pytest.approx(2.0)


# --- GDAL ---

def test_open_chart_missing_file(tmp_path):
    pytest.importorskip('osgeo')
    from openenc.core.s57_reader import open_chart

    with pytest.raises(IOError):
        open_chart(tmp_path / "US5XX00M.000")
