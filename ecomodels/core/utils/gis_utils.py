import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.warp import calculate_default_transform, reproject, Resampling


def read_and_to_3857(path, resampling=Resampling.bilinear):
    """Читает первую полосу растра и перепроецирует её в EPSG:3857 для отрисовки.
       Возвращает: data(float32, NaN вместо nodata), transform, width, height"""
    dest_crs = CRS.from_epsg(3857)
    with rasterio.open(path) as src:
        src_crs = src.crs
        band1 = src.read(1, masked=True)
        # Если уже в 3857 - просто вернуть как есть
        if src_crs == dest_crs:
            data = band1.astype("float32").filled(np.nan)
            transform = src.transform
            width, height = src.width, src.height
        else:
            transform, width, height = calculate_default_transform(
                src_crs, dest_crs, src.width, src.height, *src.bounds
            )
            data = np.full((height, width), np.nan, dtype="float32")
            reproject(
                source=band1.astype("float32").filled(np.nan),
                destination=data,
                src_transform=src.transform,
                src_crs=src_crs,
                dst_transform=transform,
                dst_crs=dest_crs,
                resampling=resampling,
                src_nodata=np.nan,
                dst_nodata=np.nan,
            )
    return data, transform, width, height
