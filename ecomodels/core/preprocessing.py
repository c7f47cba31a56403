import glob
import math
import os

import numpy as np
import pandas as pd
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import from_origin
from rasterio.warp import reproject
from scipy.ndimage import distance_transform_edt

from .utils.helpers import natural_sort_key

TARGET_CRS = "EPSG:4326"


def compute_extent(occ, buffer_deg=1.0):
    """
    Вычисляет охват области моделирования по точкам присутствия.

    Args:
        occ (pd.DataFrame): Присутствия со столбцами lon, lat.
        buffer_deg (float): Отступ от крайних точек в градусах.

    Returns:
        tuple: (min_lon, min_lat, max_lon, max_lat), ограниченный ±180/±90.
    """
    if occ is None or len(occ) == 0:
        raise ValueError("Нельзя вычислить охват: нет точек присутствия.")

    min_lon = max(-180.0, float(occ['lon'].min()) - buffer_deg)
    max_lon = min(180.0, float(occ['lon'].max()) + buffer_deg)
    min_lat = max(-90.0, float(occ['lat'].min()) - buffer_deg)
    max_lat = min(90.0, float(occ['lat'].max()) + buffer_deg)
    return (min_lon, min_lat, max_lon, max_lat)


def _snap_extent_to_grid(extent, src_bounds, res):
    # выравниваем охват по сетке исходного растра, чтобы обрезка не сдвигала пиксели
    min_lon, min_lat, max_lon, max_lat = extent
    left, top = src_bounds.left, src_bounds.top
    min_lon = left + math.floor(round((min_lon - left) / res, 9)) * res
    max_lon = left + math.ceil(round((max_lon - left) / res, 9)) * res
    max_lat = top - math.floor(round((top - max_lat) / res, 9)) * res
    min_lat = top - math.ceil(round((top - min_lat) / res, 9)) * res
    return (min_lon, min_lat, max_lon, max_lat)


def crop_single_geotiff(input_filepath, output_dir, extent, resolution=None):
    """
    Обрезает GeoTIFF по охвату (и при необходимости меняет разрешение), результат в EPSG:4326.

    Args:
        input_filepath (str): Путь к исходному GeoTIFF файлу.
        output_dir (str): Директория для сохранения обработанного файла.
        extent (tuple): Границы обрезки (min_lon, min_lat, max_lon, max_lat).
        resolution (float): Желаемое разрешение в градусах. None - разрешение исходного растра.

    Returns:
        str: Путь к созданному GeoTIFF файлу.
    """
    base_name = os.path.splitext(os.path.basename(input_filepath))[0]
    output_filepath = os.path.join(output_dir, f"{base_name}.tif")

    with rasterio.open(input_filepath) as src:
        src_crs = src.crs or CRS.from_string(TARGET_CRS)
        if resolution is None:
            res = abs(src.res[0])
            min_lon, min_lat, max_lon, max_lat = _snap_extent_to_grid(extent, src.bounds, res)
            resampling = Resampling.nearest
        else:
            res = float(resolution)
            min_lon, min_lat, max_lon, max_lat = extent
            resampling = Resampling.bilinear

        width = max(1, int(math.ceil(round((max_lon - min_lon) / res, 9))))
        height = max(1, int(math.ceil(round((max_lat - min_lat) / res, 9))))
        transform = from_origin(min_lon, max_lat, res, res)

        data = np.full((height, width), np.nan, dtype="float32")
        reproject(
            source=rasterio.band(src, 1),
            destination=data,
            src_transform=src.transform,
            src_crs=src_crs,
            src_nodata=src.nodata,
            dst_transform=transform,
            dst_crs=TARGET_CRS,
            dst_nodata=np.nan,
            resampling=resampling,
        )

    profile = {
        "driver": "GTiff",
        "height": height,
        "width": width,
        "count": 1,
        "dtype": "float32",
        "crs": TARGET_CRS,
        "transform": transform,
        "nodata": np.nan,
        "compress": "lzw",
    }
    os.makedirs(output_dir, exist_ok=True)
    with rasterio.open(output_filepath, "w", **profile) as dst:
        dst.write(data, 1)

    print(f"  Сохранен файл: {output_filepath} ({width} x {height}, шаг {res:.6f})")
    return output_filepath


def crop_rasters(raw_raster_dir, output_raster_dir, extent, resolution=None, overwrite=False, pattern=None):
    """Обрезает GeoTIFF из папки по охвату (все или только подходящие под шаблон pattern).
       Обрезанные файлы, которые новее исходных, пропускаются.
       Возвращает список путей к обрезанным растрам."""
    print("\n-- Обработка предикторов")
    patterns = [pattern] if pattern else ["*.tif", "*.tiff"]
    tifs = sorted(sum((glob.glob(os.path.join(raw_raster_dir, p)) for p in patterns), []), key=natural_sort_key)
    if not tifs:
        raise FileNotFoundError(f"В папке {raw_raster_dir} нет GeoTIFF файлов"
                                f"{' по шаблону ' + pattern if pattern else ''}.")

    os.makedirs(output_raster_dir, exist_ok=True)

    result = []
    processed_files_count = 0
    for input_filepath in tifs:
        base_name = os.path.splitext(os.path.basename(input_filepath))[0]
        final_output_filepath = os.path.join(output_raster_dir, f"{base_name}.tif")
        up_to_date = os.path.isfile(final_output_filepath) and \
            os.path.getmtime(final_output_filepath) >= os.path.getmtime(input_filepath)
        if up_to_date and not overwrite:
            result.append(final_output_filepath)
            continue
        result.append(crop_single_geotiff(input_filepath, output_raster_dir, extent, resolution))
        processed_files_count += 1

    print(f"-- Обработка предикторов завершена")
    print(f"Обработано файлов: {processed_files_count}, всего слоёв: {len(result)}")
    return result


def load_raster_stack(raster_dir, predictors='all'):
    """Считывает GeoTIFF из папки и строит стек (bands, H, W).
       predictors: 'all', строка имён через запятую или список имён (без .tif).
       Возвращает: stack(float32), valid_mask(bool), transform, crs, profile, band_names(list)"""
    all_tifs = sorted(glob.glob(os.path.join(raster_dir, "*.tif")), key=natural_sort_key)

    if isinstance(predictors, str):
        if predictors.strip().lower() == 'all':
            predictor_names = None
        else:
            predictor_names = [p.strip() for p in predictors.split(',') if p.strip()]
    else:
        predictor_names = list(predictors)

    if predictor_names is None:
        tifs = all_tifs
    else:
        # сохраняем порядок, заданный в predictors
        by_name = {os.path.splitext(os.path.basename(f))[0]: f for f in all_tifs}
        tifs = [by_name[name] for name in predictor_names if name in by_name]

    if not tifs:
        raise FileNotFoundError(f"В папке {raster_dir} не найдены файлы, соответствующие предикторам. "
                                f"Найдены только: {', '.join([os.path.basename(f) for f in all_tifs]) if all_tifs else 'ни одного'}")

    band_arrays = []
    band_names = []
    ref_transform = None
    ref_width = ref_height = None
    ref_crs = None

    for i, fp in enumerate(tifs):
        with rasterio.open(fp) as ds:
            arr = ds.read(1, masked=True).astype("float32")  # masked -> маскирует nodata
            arr = np.ma.filled(arr, np.nan)                  # превращаем masked в np.nan
            if i == 0:
                ref_transform = ds.transform
                ref_width, ref_height = ds.width, ds.height
                ref_crs = ds.crs
            else:
                # Проверки согласованности
                if ds.transform != ref_transform or ds.width != ref_width or ds.height != ref_height:
                    raise ValueError(f"Растр {fp} не согласован по геометрии с первым растром")
                if ds.crs != ref_crs:
                    raise ValueError(f"Растр {fp} имеет другой CRS: {ds.crs} vs {ref_crs}")
            band_arrays.append(arr)
            band_names.append(os.path.splitext(os.path.basename(fp))[0])

    stack = np.stack(band_arrays, axis=0)  # shape: (bands, H, W)
    # Маска валидных пикселей: валиден, если нет NaN во всех слоях
    valid_mask = np.all(~np.isnan(stack), axis=0)
    profile = {
        "driver": "GTiff",
        "height": ref_height,
        "width": ref_width,
        "count": 1,
        "dtype": "float32",
        "crs": ref_crs,
        "transform": ref_transform,
        "compress": "lzw",
        "nodata": np.nan
    }
    return stack, valid_mask, ref_transform, ref_crs, profile, band_names


def points_to_pixel_indices(lons, lats, transform, width, height):
    """Преобразует координаты (lon, lat) в индексы пикселей (row, col).
       Возвращает row, col и маску тех, кто внутри границ растра."""
    lons = np.asarray(lons, dtype=float)
    lats = np.asarray(lats, dtype=float)
    if lons.size == 0:
        empty = np.array([], dtype=int)
        return empty, empty, np.array([], dtype=bool)
    # обратное аффинное преобразование даёт дробные индексы (col, row)
    cols_f, rows_f = ~transform * (lons, lats)
    rows = np.floor(rows_f).astype(int)
    cols = np.floor(cols_f).astype(int)
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    return rows, cols, inside


def pixel_indices_to_points(rows, cols, transform, width, height):
    """
    Преобразует индексы пикселей (row, col) в координаты центров пикселей (lon, lat).

    Returns:
        tuple: lons, lats и булев массив inside; для пикселей вне растра координаты NaN.
    """
    rows = np.asarray(rows, dtype=int)
    cols = np.asarray(cols, dtype=int)
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    lons, lats = transform * (cols + 0.5, rows + 0.5)
    lons = np.where(inside, lons, np.nan)
    lats = np.where(inside, lats, np.nan)
    return lons, lats, inside


def deduplicate_presences(rows, cols):
    """Дедупликация по пикселю: оставляем по одному наблюдению на клетку."""
    pres_rc = pd.DataFrame({"r": rows, "c": cols}).drop_duplicates().values
    if len(pres_rc) == 0:
        empty = np.array([], dtype=int)
        return empty, empty
    return pres_rc[:, 0].astype(int), pres_rc[:, 1].astype(int)


def _cells_mask(shape, valid_mask, cells):
    # булева маска (H, W), True в валидных клетках из набора cells
    mask = np.zeros(shape, dtype=bool)
    height, width = shape
    for r, c in cells:
        if 0 <= r < height and 0 <= c < width and valid_mask[r, c]:
            mask[r, c] = True
    return mask


def _choose(candidates_mask, n, rng):
    candidates = np.flatnonzero(candidates_mask)
    n = int(min(n, candidates.size))
    if n <= 0:
        return np.array([], dtype=np.int64)
    return rng.choice(candidates, size=n, replace=False)


def sample_background(valid_mask, presence_cells, n_bg, rng, bg_pc=100, distance_min_pixels=1, distance_max_pixels=1):
    """
    Сэмплирует n_bg фоновых пикселей (точек псевдоотсутствия), разделяя их на две части:
    1. bg_pc% точек - случайно в пределах valid_mask (исключая клетки присутствия).
    2. Остальные - в пределах "огибающей" вокруг точек присутствия,
       на расстоянии от distance_min_pixels до distance_max_pixels (в пикселях).
    Если кандидатов не хватает, недостающие точки добираются из оставшейся валидной территории.

    Args:
        valid_mask (np.ndarray): Булева маска, где True - пиксели, пригодные для моделирования.
        presence_cells (set): Множество кортежей (строка, столбец) точек присутствия вида.
        n_bg (int): Общее желаемое количество фоновых точек.
        rng (np.random.Generator): Генератор случайных чисел.
        bg_pc (float): Доля (в процентах) случайного фона.
        distance_min_pixels (float): Минимальное расстояние от точек присутствия.
        distance_max_pixels (float): Максимальное расстояние от точек присутствия.

    Returns:
        tuple: (rows_bg, cols_bg) - массивы строк и столбцов фоновых точек.
    """
    height, width = valid_mask.shape
    presence_mask = _cells_mask(valid_mask.shape, valid_mask, presence_cells)
    available = valid_mask & ~presence_mask

    # --- Часть 1: Случайный фон по всей valid_mask ---
    n_bg_random = int(round(n_bg * bg_pc / 100))
    if not available.any():
        print("ВНИМАНИЕ: Нет доступных валидных пикселей для генерации случайного фона.")
    chosen = _choose(available, n_bg_random, rng)
    print(f"Сгенерировано случайных фоновых точек: {len(chosen)}")

    # --- Часть 2: Фон в "огибающей" (буфере) ---
    n_bg_buffer_target = n_bg - len(chosen)
    if bg_pc < 100 and n_bg_buffer_target > 0:
        if not presence_mask.any():
            print("ВНИМАНИЕ: Отсутствуют точки присутствия для генерации фона в огибающей.")
        else:
            # расстояние от каждого пикселя до ближайшей точки присутствия (в пикселях)
            distance_to_presence = distance_transform_edt(~presence_mask)
            buffer_mask = (distance_to_presence >= distance_min_pixels) & \
                          (distance_to_presence <= distance_max_pixels) & available
            buffer_mask.ravel()[chosen] = False
            chosen_buffer = _choose(buffer_mask, n_bg_buffer_target, rng)
            if chosen_buffer.size == 0:
                print(f"ВНИМАНИЕ: Нет доступных валидных пикселей в радиусе ({distance_min_pixels} - "
                      f"{distance_max_pixels} пикселей) вокруг точек присутствия.")
            print(f"Сгенерировано точек в огибающей: {len(chosen_buffer)}")
            chosen = np.concatenate((chosen, chosen_buffer))

    # Добор недостающих точек из оставшейся территории
    remaining_to_sample = n_bg - len(chosen)
    if remaining_to_sample > 0 and bg_pc < 100:
        print(f"ВНИМАНИЕ: Сгенерировано {len(chosen)} фоновых точек вместо {n_bg}. "
              f"Попытка добрать {remaining_to_sample} из оставшейся территории.")
        rest = available.copy()
        rest.ravel()[chosen] = False
        chosen = np.concatenate((chosen, _choose(rest, remaining_to_sample, rng)))

    if len(chosen) < n_bg:
        print(f"ВНИМАНИЕ: Доступно только {len(chosen)} фоновых точек из {n_bg} запрошенных.")

    # Перемешиваем финальный набор точек
    chosen = chosen[rng.permutation(len(chosen))].astype(np.int64)
    return chosen // width, chosen % width


def extract_features_from_stack(stack, rows, cols):
    """Извлекает значения предикторов из стека по индексам пикселей.
       Возвращает X: (n_samples, n_bands)."""
    return stack[:, rows, cols].T


def build_point_table(presence, background):
    """Объединяет присутствия и псевдоотсутствия в одну таблицу со столбцами lon, lat, pa."""
    pres = pd.DataFrame({'lon': np.asarray(presence['lon'], dtype=float),
                         'lat': np.asarray(presence['lat'], dtype=float)})
    bg = pd.DataFrame({'lon': np.asarray(background['lon'], dtype=float),
                       'lat': np.asarray(background['lat'], dtype=float)})
    pres['pa'] = 1
    bg['pa'] = 0
    return pd.concat([pres, bg], ignore_index=True)


def extract_point_values(point_table, stack, transform, band_names):
    """Добавляет к таблице точек значения всех слоёв стека.
       Точки вне растра или на пикселях с NaN отбрасываются."""
    _, height, width = stack.shape
    rows, cols, inside = points_to_pixel_indices(point_table['lon'].values, point_table['lat'].values,
                                                 transform, width, height)
    table = point_table.loc[inside].reset_index(drop=True)
    values = extract_features_from_stack(stack, rows[inside], cols[inside])
    features = pd.DataFrame(values, columns=list(band_names))
    table = pd.concat([table, features], axis=1)

    n_before = len(table)
    table = table.dropna(subset=list(band_names)).reset_index(drop=True)
    if n_before - len(table) > 0:
        print(f"Отброшено точек с пустыми значениями предикторов: {n_before - len(table)}")
    return table
