# examples/example_sdm.py

import ecomodels

config = {
    'IN_ID': 1,
    'IN_CSV': 'data/occurrences.csv',   # выгрузка GBIF или таблица с колонками lon/lat
    'DOWNLOAD': True,                   # скачать 19 биоклиматических слоёв WorldClim 2.1
    'WORLDCLIM_RES': '10m',
    'RAW_RASTER_DIR': 'input_predictors',
    'OUTPUT_DIR': 'output',
    'IN_MODEL': 'GLM',

    # параметры для генерации фоновых точек
    'BG_MULT': 10,
    'BG_PC': 50,
    'BG_DISTANCE_MIN': 10,
    'BG_DISTANCE_MAX': 30,

    'THRESHOLD_METHOD': 'spec_sens',
    'DO_GISTO': 1,
}

try:
    report = ecomodels.SpeciesDistributionModel(config).run()
    print("\nМоделирование успешно завершено.")
    for key, val in report['files'].items():
        print(f"- {key}: {val}")
except FileNotFoundError as e:
    print(f"Ошибка: Не найден файл или директория - {e}")
except ecomodels.SDMError as e:
    print(f"Недостаточно данных для модели: {e}")
