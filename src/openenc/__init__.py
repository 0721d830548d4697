"""
openenc

Imports S-57 Electronic Navigational Charts (ENC) into PostGIS: one table per
feature type (DEPARE, LNDARE, LIGHTS, SOUNDG), an enc_catalog table with the
edition, update and coverage of every chart cell, and vector-tile functions
(ST_AsMVT) that serve them with scale-dependent visibility.

Installation
------------
    pip install -e .

GDAL Configuration
------------------
The GDAL Python bindings must match the installed GDAL library and include the
S57 driver:
  - pip (automatic wheel): gdal
  - System package manager (fallback):
    * Ubuntu/Debian: apt-get install gdal-bin python3-gdal
    * macOS: brew install gdal

PostgreSQL 15+ with PostGIS 3 is required on the database side.
"""

__version__ = "0.1.0"
__author__ = "Viktor Kolbasov"
__email__ = "contact@studentdotai.com"
__license__ = "AGPL-3.0-only"

__all__ = [
    "__version__",
    "__author__",
    "__email__",
    "__license__",
]
