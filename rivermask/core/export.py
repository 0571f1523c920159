"""Export sinks for tables and mask rasters.

A sink receives flat record tables (summary metrics, validation samples),
binary mask images and multi-band reflectance composites. FolderSink writes them to a directory; MemorySink
keeps them for inspection in tests.

Depends on: openpyxl (XLSX tables), osgeo.gdal (GeoTIFF, optional).
"""

import csv
import logging
import os
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np
import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill

from ..domain.models import RasterImage
from ..domain.region import Region
from ..domain.water_index import MASK_BAND

logger = logging.getLogger(__name__)

# GDAL is an optional extra; without it masks are not written
_GDAL_AVAILABLE = False
try:
    from osgeo import gdal, osr

    gdal.UseExceptions()
    _GDAL_AVAILABLE = True
except ImportError:
    pass

MASK_NODATA = 255
COMPOSITE_NODATA = -9999.0


def is_geotiff_available() -> bool:
    """Check if GeoTIFF export is available."""
    return _GDAL_AVAILABLE


def _columns(rows: Sequence[dict], columns: Optional[Sequence[str]]) -> List[str]:
    if columns is not None:
        return list(columns)
    return list(rows[0].keys()) if rows else []


class ExportSink:
    """Destination for run outputs."""

    def export_table(
        self,
        rows: Sequence[dict],
        description: str,
        columns: Optional[Sequence[str]] = None,
    ) -> None:
        raise NotImplementedError

    def export_image(self, image: RasterImage, region: Region, description: str) -> None:
        raise NotImplementedError

    def export_composite(self, image: RasterImage, region: Region, description: str) -> None:
        raise NotImplementedError


class MemorySink(ExportSink):
    """Keeps every export in memory, keyed by description."""

    def __init__(self):
        self.tables: Dict[str, List[dict]] = {}
        self.images: Dict[str, RasterImage] = {}
        self.composites: Dict[str, RasterImage] = {}
        self._lock = threading.Lock()

    def export_table(self, rows, description, columns=None):
        cols = _columns(rows, columns)
        with self._lock:
            self.tables[description] = [{c: r.get(c) for c in cols} for r in rows]

    def export_image(self, image, region, description):
        with self._lock:
            self.images[description] = image

    def export_composite(self, image, region, description):
        with self._lock:
            self.composites[description] = image


class FolderSink(ExportSink):
    """Writes tables as CSV or XLSX and rasters as GeoTIFF under one folder.

    Args:
        folder: Output directory, created if missing.
        table_format: "csv" or "xlsx".
        write_images: Write GeoTIFF masks and composites. Defaults to
            whether GDAL is importable.
    """

    def __init__(self, folder: str, table_format: str = "csv",
                 write_images: Optional[bool] = None):
        if table_format not in ("csv", "xlsx"):
            raise ValueError(f"Unknown table format '{table_format}'")
        if write_images and not _GDAL_AVAILABLE:
            raise ImportError(
                "GeoTIFF export requires GDAL. Install it via: "
                "pip install rivermask[gdal]"
            )
        self.folder = folder
        self.table_format = table_format
        self.write_images = _GDAL_AVAILABLE if write_images is None else write_images
        os.makedirs(folder, exist_ok=True)
        if not self.write_images:
            logger.warning("GDAL not available; rasters will not be written")

    def _path(self, description: str, ext: str) -> str:
        return os.path.join(self.folder, f"{description}.{ext}")

    def export_table(self, rows, description, columns=None):
        cols = _columns(rows, columns)
        if self.table_format == "xlsx":
            path = self._path(description, "xlsx")
            _write_xlsx(path, rows, cols, title=description)
        else:
            path = self._path(description, "csv")
            _write_csv(path, rows, cols)
        logger.info("Wrote %d rows to %s", len(rows), path)

    def export_image(self, image, region, description):
        if not self.write_images:
            return
        path = self._path(description, "tif")
        _write_geotiff(path, image, [MASK_BAND], gdal.GDT_Byte, MASK_NODATA)
        logger.info("Wrote mask %s (%s)", path, region.name)

    def export_composite(self, image, region, description):
        if not self.write_images:
            return
        path = self._path(description, "tif")
        _write_geotiff(path, image, list(image.band_names), gdal.GDT_Float32, COMPOSITE_NODATA)
        logger.info("Wrote composite %s (%s, %d bands)", path, region.name, len(image.band_names))


def _write_csv(path: str, rows: Sequence[dict], columns: Sequence[str]) -> None:
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            # None is written as an empty cell, distinct from 0
            writer.writerow({c: ("" if row.get(c) is None else row.get(c)) for c in columns})


def _write_xlsx(path: str, rows: Sequence[dict], columns: Sequence[str], title: str) -> None:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title[:31]

    fill_header = PatternFill("solid", fgColor="4472C4")
    font_header_white = Font(bold=True, size=11, color="FFFFFF")
    center = Alignment(horizontal="center", vertical="center")

    for c, hdr in enumerate(columns, start=1):
        cell = ws.cell(row=1, column=c, value=hdr)
        cell.font = font_header_white
        cell.fill = fill_header
        cell.alignment = center

    for r, row in enumerate(rows, start=2):
        for c, col in enumerate(columns, start=1):
            value = row.get(col)
            if isinstance(value, float):
                cell = ws.cell(row=r, column=c, value=round(value, 6))
                cell.number_format = "0.0000"
            else:
                ws.cell(row=r, column=c, value=value)

    for c in range(1, len(columns) + 1):
        ws.column_dimensions[openpyxl.utils.get_column_letter(c)].width = 16
    ws.freeze_panes = "A2"
    wb.save(path)


def _write_geotiff(
    path: str,
    image: RasterImage,
    bands: Sequence[str],
    data_type: int,
    nodata: float,
) -> None:
    """One GeoTIFF band per image band; undefined pixels become nodata."""
    grid = image.grid
    dtype = np.uint8 if data_type == gdal.GDT_Byte else np.float32

    driver = gdal.GetDriverByName("GTiff")
    ds = driver.Create(path, grid.width, grid.height, len(bands), data_type,
                       options=["COMPRESS=LZW"])
    x0, dx, y0, dy = grid.transform
    ds.SetGeoTransform((x0, dx, 0.0, y0, 0.0, dy))
    if grid.crs_epsg:
        srs = osr.SpatialReference()
        srs.ImportFromEPSG(grid.crs_epsg)
        ds.SetProjection(srs.ExportToWkt())
    for i, name in enumerate(bands, start=1):
        data = np.where(image.valid, image.band(name), nodata).astype(dtype)
        out = ds.GetRasterBand(i)
        out.WriteArray(data)
        out.SetNoDataValue(nodata)
        out.SetDescription(name)
        out.FlushCache()
    ds = None
