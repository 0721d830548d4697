import pytest

from ogr_fakes import FakeDataset, FakeFeature, FakeLayer, square


@pytest.fixture
def depare_dataset():
    """Chart with DSID metadata, one M_COVR polygon and three DEPARE features."""
    dsid = FakeLayer('DSID', [FakeFeature({'DSID_EDTN': 3, 'DSID_UPDN': 2, 'DSPM_CSCL': 12000})])
    m_covr = FakeLayer('M_COVR', [FakeFeature({'CATCOV': 1}, square(0, 0))])
    depare = FakeLayer('DEPARE', [
        FakeFeature({'OBJL': 42, 'DRVAL1': 0.0, 'DRVAL2': 5.0}, square(0, 0, 0.5), fid=10),
        FakeFeature({'OBJL': 42, 'DRVAL1': 5.0, 'DRVAL2': 10.0}, square(0.5, 0, 0.5), fid=11),
        FakeFeature({'OBJL': 42, 'DRVAL1': 10.0, 'DRVAL2': 20.0}, square(0, 0.5, 0.5), fid=12),
    ])
    return FakeDataset([dsid, m_covr, depare])
