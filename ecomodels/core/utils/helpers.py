import json
import math
import os
import re

import numpy as np
import rasterio


def round_to_significant_figures(number: float, sig_digits: int = 4) -> float:
    """
    Округляет число до заданного количества значащих цифр.

    Args:
        number: Число, которое нужно округлить.
        sig_digits: Количество значащих цифр. По умолчанию 4.

    Returns:
        Округленное число.
    """
    if not isinstance(sig_digits, int) or sig_digits <= 0:
        raise ValueError("Количество значащих цифр должно быть положительным целым числом.")

    number = float(number)
    if number == 0 or not math.isfinite(number):
        return number

    # порядок величины: для 340 -> 2, для 1029.6 -> 3
    order_of_magnitude = math.floor(math.log10(abs(number)))
    power_for_rounding = order_of_magnitude - (sig_digits - 1)
    multiplier = 10.0 ** power_for_rounding

    return round(number / multiplier) * multiplier


def get_predictor_stats(data: np.ndarray) -> dict:
    """
    Вычисляет основные статистические показатели для набора данных (NaN игнорируются).
    """
    data = np.asarray(data, dtype=float)
    data = data[~np.isnan(data)]
    if data.size == 0:
        return {key: np.nan for key in ('mean', 'median', 'min', 'max', 'p5', 'p95')}

    stats = {
        'mean': round_to_significant_figures(np.mean(data), 4),
        'median': round_to_significant_figures(np.median(data), 4),
        'min': round_to_significant_figures(np.min(data), 4),
        'max': round_to_significant_figures(np.max(data), 4),
        'p5': round_to_significant_figures(np.percentile(data, 5), 4),
        'p95': round_to_significant_figures(np.percentile(data, 95), 4)
    }
    return stats


def format_float(value: float) -> str:
    """
    Форматирует число с плавающей точкой для отображения (убирает лишние нули).
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return 'NA'
    return f"{value:.4f}".rstrip('0').rstrip('.')


def natural_sort_key(name):
    """Ключ сортировки, при котором bio_2 идёт раньше bio_10."""
    base = os.path.basename(name)
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r'(\d+)', base)]


def save_geotiff(output_path, array2d, profile):
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    prof = profile.copy()
    prof.update(count=1, dtype="float32", nodata=np.nan)
    with rasterio.open(output_path, "w", **prof) as dst:
        dst.write(array2d.astype("float32"), 1)


def _to_builtin(value):
    # numpy-типы не сериализуются json напрямую
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    return str(value)


def write_json_report(path, data):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=4, default=_to_builtin)
    return path
