import json
import os

# Параметры моделирования ареала. Ключи становятся атрибутами SpeciesDistributionModel.
DEFAULT_SDM_CONFIG = {
    'IN_ID': 1,                     # идентификатор прогона, имя подпапки с результатами
    'IN_CSV': '',                   # путь к CSV с наблюдениями или сам текст csv
    'CSV_SEP': None,                # разделитель csv, None - определить автоматически
    'FILTER_GBIF': True,            # отбрасывать неточные записи GBIF
    'EXTENT': None,                 # (min_lon, min_lat, max_lon, max_lat); None - по точкам
    'EXTENT_BUFFER': 1.0,           # отступ вокруг точек, градусы
    'DOWNLOAD': False,              # скачать слои WorldClim
    'WORLDCLIM_VAR': 'bio',
    'WORLDCLIM_RES': '10m',
    'RAW_RASTER_DIR': 'input_predictors',
    'OUTPUT_DIR': 'output',
    'RESOLUTION': None,             # шаг обрезанных растров в градусах; None - как у исходных
    'PREDICTORS': 'all',
    'IN_MODEL': 'GLM',              # GLM или RandomForest
    'RANDOM_SEED': 42,
    'MIN_PRESENCES': 5,             # минимум уникальных (по пикселю) присутствий
    'BG_MULT': 10,                  # фоновых точек на одно присутствие
    'MAX_BG': 10000,
    'BG_PC': 100,                   # % случайного фона, остальное - в огибающей вокруг присутствий
    'BG_DISTANCE_MIN': 10,          # пиксели
    'BG_DISTANCE_MAX': 20,
    'TEST_SIZE': 0.2,
    'THRESHOLD_METHOD': 'spec_sens',
    'DO_GISTO': 0,                  # строить гистограммы предикторов
    'BASEMAP': False,               # подложка OpenStreetMap на картах (нужна сеть)
    'JOBS': None,                   # словарь статусов при запуске нескольких прогонов
}

# Параметры анализа временного ряда NDVI.
DEFAULT_TS_CONFIG = {
    'IN_ID': 1,
    'IN_CSV': '',
    'DATE_COL': 'date',
    'VALUE_COL': 'ndvi',
    'EXOG_COL': None,               # например 'rain' - внешний регрессор для AR модели
    'AR_ORDER': 2,
    'ACF_LAGS': 24,
    'LB_LAGS': 10,
    'FORECAST_STEPS': 0,
    'OUTPUT_DIR': 'output',
}


def load_config(path=None, defaults=None, overrides=None):
    """
    Собирает конфигурацию: значения по умолчанию, затем JSON-файл, затем явные параметры.

    Args:
        path (str): Путь к JSON с параметрами (необязательно).
        defaults (dict): Значения по умолчанию (DEFAULT_SDM_CONFIG по умолчанию).
        overrides (dict): Явные параметры; значения None пропускаются.

    Returns:
        dict: Итоговая конфигурация.
    """
    config = dict(DEFAULT_SDM_CONFIG if defaults is None else defaults)
    if path:
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Файл конфигурации не найден: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            config.update(json.load(f))
    if overrides:
        config.update({k: v for k, v in overrides.items() if v is not None})
    return config
