# ecomodels/sdm.py

import glob
import hashlib
import os
import zipfile

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import DEFAULT_SDM_CONFIG
from .core.data_loading import read_occurrence_table, detect_coordinate_columns, detect_species
from .core.data_loading import filter_gbif_records, load_occurrences
from .core.modeling import build_model, split_train_test, predict_suitability_for_stack
from .core.modeling import evaluate_model, confusion_at_threshold, classify_suitability, suitability_summary
from .core.preprocessing import compute_extent, crop_rasters, load_raster_stack
from .core.preprocessing import points_to_pixel_indices, pixel_indices_to_points, deduplicate_presences
from .core.preprocessing import sample_background, extract_features_from_stack
from .core.preprocessing import build_point_table, extract_point_values
from .core.worldclim import download_worldclim, layer_glob
from .core.utils.helpers import save_geotiff, write_json_report
from .core.utils.plot_utils import draw_map, draw_binary_map, create_beautiful_histogram


class SDMError(ValueError):
    """Данные не позволяют построить модель (слишком мало точек и т.п.)."""


class SpeciesDistributionModel:
    """
    Модель ареала вида по точкам присутствия и биоклиматическим растрам (GLM).
    Каждый шаг - отдельный метод; run() выполняет их по порядку.
    """
    def __init__(self, config):
        for attribute_name, attribute_value in DEFAULT_SDM_CONFIG.items():
            setattr(self, attribute_name, attribute_value)
        for attribute_name, attribute_value in config.items():
            setattr(self, attribute_name, attribute_value)

        self.OUTPUT_RUN_DIR = os.path.join(self.OUTPUT_DIR, str(self.IN_ID))
        self.OUTPUT_HISTOGRAMS_DIR = os.path.join(self.OUTPUT_RUN_DIR, 'gistos')
        self.OUTPUT_SUITABILITY_TIF = os.path.join(self.OUTPUT_RUN_DIR, f"suitability_{self.IN_ID}.tif")
        self.OUTPUT_SUITABILITY_JPG = os.path.join(self.OUTPUT_RUN_DIR, f"suitability_{self.IN_ID}.jpg")
        self.OUTPUT_BINARY_TIF = os.path.join(self.OUTPUT_RUN_DIR, f"binary_{self.IN_ID}.tif")
        self.OUTPUT_BINARY_JPG = os.path.join(self.OUTPUT_RUN_DIR, f"binary_{self.IN_ID}.jpg")
        self.POINTS_CSV = os.path.join(self.OUTPUT_RUN_DIR, f"points_{self.IN_ID}.csv")
        self.COEFS_CSV = os.path.join(self.OUTPUT_RUN_DIR, f"coefficients_{self.IN_ID}.csv")
        self.REPORT_JSON = os.path.join(self.OUTPUT_RUN_DIR, f"report_{self.IN_ID}.json")

        self.species = ''
        self.extent = None
        self.RASTER_DIR = None
        os.makedirs(self.OUTPUT_RUN_DIR, exist_ok=True)

        # для запуска нескольких прогонов
        if self.JOBS is not None and self.IN_ID not in self.JOBS:
            self.JOBS[self.IN_ID] = {'status': 'queued', 'file': None, 'error': None}

    def _set_status(self, status, error=None):
        if self.JOBS is not None:
            self.JOBS[self.IN_ID]['status'] = status
            self.JOBS[self.IN_ID]['error'] = error
            if status == 'done':
                self.JOBS[self.IN_ID]['file'] = self.REPORT_JSON

    def load_occurrences(self):
        # 1) Загрузка присутствий
        print(f"\n-- 1. Загрузка наблюдений ({self.IN_ID})")
        self.df = read_occurrence_table(self.IN_CSV, self.CSV_SEP)
        self.species = detect_species(self.df)
        self.LON_COL, self.LAT_COL = detect_coordinate_columns(self.df)

        if self.FILTER_GBIF:
            print(f"-- 1.1. Фильтрация мусорных данных из GBIF ({self.IN_ID})")
            self.df = filter_gbif_records(self.df)

        self.occ = load_occurrences(self.df, self.LON_COL, self.LAT_COL)
        print(f"Осталось записей с корректными координатами: {len(self.occ)}")
        if len(self.occ) == 0:
            raise SDMError('Во входных данных нет наблюдений с координатами. Проверьте источник.')

    def compute_extent(self):
        # 2) Охват области моделирования
        print(f"\n-- 2. Охват области моделирования ({self.IN_ID})")
        if self.EXTENT is not None:
            self.extent = tuple(float(v) for v in self.EXTENT)
        else:
            self.extent = compute_extent(self.occ, self.EXTENT_BUFFER)
        min_lon, min_lat, max_lon, max_lat = self.extent
        if min_lon >= max_lon or min_lat >= max_lat:
            raise SDMError(f"Некорректный охват: {self.extent}")
        print(f"({min_lon:.4f}, {min_lat:.4f}), ({max_lon:.4f}, {max_lat:.4f})")

    def prepare_predictors(self):
        # 3) Загрузка и обрезка предикторов по охвату
        print(f"\n-- 3. Подготовка предикторов ({self.IN_ID})")
        raw_dir = self.RAW_RASTER_DIR
        if self.DOWNLOAD:
            # каждое разрешение WorldClim - в своей подпапке
            raw_dir = os.path.join(self.RAW_RASTER_DIR, self.WORLDCLIM_RES)
            download_worldclim(raw_dir, self.WORLDCLIM_VAR, self.WORLDCLIM_RES)

        # если в папке есть слои WorldClim нужного разрешения, берём только их
        pattern = layer_glob(self.WORLDCLIM_VAR, self.WORLDCLIM_RES)
        if glob.glob(os.path.join(raw_dir, pattern)):
            layers_tag = f"wc2.1_{self.WORLDCLIM_RES}_{self.WORLDCLIM_VAR}"
        else:
            pattern = None
            layers_tag = os.path.basename(os.path.normpath(raw_dir)) or 'raw'
        source_key = hashlib.md5(os.path.abspath(raw_dir).encode('utf-8')).hexdigest()[:8]

        min_lon, min_lat, max_lon, max_lat = self.extent
        step = 'native' if self.RESOLUTION is None else str(self.RESOLUTION)
        # обрезанные растры кэшируются по набору слоёв, исходной папке, шагу и охвату
        self.RASTER_DIR = os.path.join(self.OUTPUT_DIR, 'predictors', f"{layers_tag}_{source_key}", step,
                                       f"({min_lon:.4f},{min_lat:.4f}), ({max_lon:.4f},{max_lat:.4f})")
        crop_rasters(raw_dir, self.RASTER_DIR, self.extent, self.RESOLUTION, pattern=pattern)

    def load_predictors(self):
        # 4) Загрузка стека предикторов
        print(f"\n-- 4. Загрузка предикторов ({self.IN_ID})")
        self.stack, self.valid_mask, self.transform, self.crs, self.profile, self.band_names = \
            load_raster_stack(self.RASTER_DIR, self.PREDICTORS)
        self.bands, self.H, self.W = self.stack.shape
        print(f"Загружено предикторов: {self.bands} | Размер: {self.H} x {self.W} | CRS: {self.crs}")
        print("Слои:", self.band_names)

    def prepare_data(self):
        # 5) Привязка присутствий к пикселям растра, фильтрация по маске валидности и дедупликация
        print(f"\n-- 5. Привязка присутствий к пикселям растра ({self.IN_ID})")
        rows, cols, inside = points_to_pixel_indices(self.occ['lon'].values, self.occ['lat'].values,
                                                     self.transform, self.W, self.H)
        rows, cols = rows[inside], cols[inside]
        # И те, что попадают на валидные пиксели (без NaN во всех слоях)
        valid_here = self.valid_mask[rows, cols]
        rows, cols = rows[valid_here], cols[valid_here]
        print(f"Присутствий внутри валидной области: {len(rows)}")

        self.rows_p, self.cols_p = deduplicate_presences(rows, cols)
        self.n_presence = len(self.rows_p)
        print(f"Уникальных присутствий (по пикселю): {self.n_presence}")
        if self.n_presence < 20:
            print("Внимание: очень мало уникальных присутствий в пределах растра.")
        if self.n_presence < self.MIN_PRESENCES:
            raise SDMError(f"Внутри области моделирования очень мало уникальных присутствий. "
                           f"Должно быть не менее {self.MIN_PRESENCES}, сейчас: {self.n_presence}.")

        lons, lats, _ = pixel_indices_to_points(self.rows_p, self.cols_p, self.transform, self.W, self.H)
        self.presence = pd.DataFrame({'lon': lons, 'lat': lats})

    def generate_background(self):
        # 6) Генерация точек псевдоотсутствия
        print(f"\n-- 6. Генерация точек псевдоотсутствия ({self.IN_ID})")
        print(f"Параметры: BG_PC={self.BG_PC}, BG_DISTANCE_MIN={self.BG_DISTANCE_MIN}, "
              f"BG_DISTANCE_MAX={self.BG_DISTANCE_MAX}, BG_MULT={self.BG_MULT}")
        # Сколько фоновых точек генерировать: мин(MAX_BG, BG_MULT * N_presence)
        n_bg = int(min(self.MAX_BG, self.BG_MULT * self.n_presence))
        rng = np.random.default_rng(self.RANDOM_SEED)
        presence_cells = set(zip(self.rows_p.tolist(), self.cols_p.tolist()))
        self.rows_bg, self.cols_bg = sample_background(self.valid_mask, presence_cells, n_bg, rng,
                                                       self.BG_PC, self.BG_DISTANCE_MIN, self.BG_DISTANCE_MAX)
        if len(self.rows_bg) == 0:
            raise SDMError("Не удалось сгенерировать ни одной точки псевдоотсутствия.")

        lons, lats, _ = pixel_indices_to_points(self.rows_bg, self.cols_bg, self.transform, self.W, self.H)
        self.background = pd.DataFrame({'lon': lons, 'lat': lats})
        print(f"Сэмплировано фоновых точек: {len(self.background)}")

    def extract_features(self):
        # 7) Объединение присутствий и псевдоотсутствий, извлечение значений предикторов
        print(f"\n-- 7. Извлечение признаков ({self.IN_ID})")
        point_table = build_point_table(self.presence, self.background)
        self.data = extract_point_values(point_table, self.stack, self.transform, self.band_names)
        self.X = self.data[self.band_names].values
        self.y = self.data['pa'].values.astype(int)
        print(f"Матрица признаков: {self.X.shape}, классы: {np.bincount(self.y, minlength=2)}")
        self.data.to_csv(self.POINTS_CSV, index=False)
        print(f"Таблица точек сохранена: {self.POINTS_CSV}")

    def draw_histograms(self):
        # 8) Гистограммы предикторов: точки присутствия на фоне всей области
        if self.DO_GISTO != 1:
            return
        print(f"\n-- 8. Постройка гистограмм ({self.IN_ID})")
        os.makedirs(self.OUTPUT_HISTOGRAMS_DIR, exist_ok=True)
        X_pres = extract_features_from_stack(self.stack, self.rows_p, self.cols_p)
        rows_full, cols_full = np.nonzero(self.valid_mask)
        X_full = extract_features_from_stack(self.stack, rows_full, cols_full)
        title = f"Вид: {self.species}" if self.species else ''

        self.histogram_stats = {}
        for i, band_name in enumerate(self.band_names):
            fig_single, ax_single = plt.subplots(1, 1, figsize=(7, 5))
            self.histogram_stats[band_name] = create_beautiful_histogram(ax_single, X_pres[:, i], band_name, 50,
                                                                         X_full[:, i], title)
            safe_band_name = band_name.replace(' ', '_').replace('/', '_').replace('\\', '_')
            output_filename = os.path.join(self.OUTPUT_HISTOGRAMS_DIR, f"{safe_band_name}.png")
            fig_single.savefig(output_filename, dpi=150, bbox_inches='tight')
            plt.close(fig_single)
            print(f"Сохранена гистограмма: {i} - {output_filename}")

        archive_path = os.path.join(self.OUTPUT_HISTOGRAMS_DIR, "histos.zip")
        files_to_zip = glob.glob(os.path.join(self.OUTPUT_HISTOGRAMS_DIR, "*.png"))
        with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            for file_path in files_to_zip:
                zipf.write(file_path, os.path.basename(file_path))
        print(f"Гистограммы упакованы в '{archive_path}'.")

    def split_train_test(self):
        # 9) Разделение на train/test
        print(f"\n-- 9. Разделение на train/test ({self.IN_ID})")
        self.X_train, self.X_test, self.y_train, self.y_test = split_train_test(
            self.X, self.y, test_size=self.TEST_SIZE, random_seed=self.RANDOM_SEED
        )
        print(f"Обучающая выборка: {len(self.y_train)}, тестовая: {len(self.y_test)}")

    def train_model(self):
        # 10) Обучение модели
        print(f"\n-- 10. Обучение модели {self.IN_MODEL} ({self.IN_ID})")
        self.model = build_model(self.IN_MODEL, self.RANDOM_SEED, feature_names=self.band_names)
        self.model.fit(self.X_train, self.y_train)

        if self.IN_MODEL == 'GLM':
            print(self.model.summary())
            self.model.coefficients.to_csv(self.COEFS_CSV, index_label='term')

        print("Важность предикторов:")
        for name, imp in sorted(zip(self.band_names, self.model.feature_importances_), key=lambda x: -x[1]):
            print(f"  {name:30s} {imp:.4f}")

    def evaluate(self):
        # 11) Оценка модели на отложенной выборке и выбор порога
        print(f"\n-- 11. Оценка модели ({self.IN_ID})")
        y_prob = self.model.predict_proba(self.X_test)[:, 1]
        self.evaluation = evaluate_model(self.y_test, y_prob)
        self.auc = self.evaluation['auc']
        print(f"ROC AUC (holdout): {self.auc:.3f}, cor: {self.evaluation['cor']:.3f}")

        thresholds = self.evaluation['thresholds']
        if self.THRESHOLD_METHOD not in thresholds:
            raise ValueError(f"Неизвестный метод выбора порога: {self.THRESHOLD_METHOD}. "
                             f"Возможные: {', '.join(thresholds)}")
        self.threshold = thresholds[self.THRESHOLD_METHOD]
        for name, value in thresholds.items():
            print(f"  порог {name:16s} {value:.4f}")

        p = y_prob[self.y_test == 1]
        a = y_prob[self.y_test == 0]
        self.confusion = confusion_at_threshold(p, a, self.threshold)
        print(f"Порог ({self.THRESHOLD_METHOD}): {self.threshold:.4f}, "
              f"чувствительность: {self.confusion['sensitivity']:.3f}, "
              f"специфичность: {self.confusion['specificity']:.3f}, TSS: {self.confusion['tss']:.3f}")

    def predict_current(self):
        # 12) Прогноз на всю область, карта пригодности и бинарная карта
        print(f"\n-- 12. Прогноз на всю область ({self.IN_ID})")
        self.suitability = predict_suitability_for_stack(self.model, self.stack, self.valid_mask, batch_size=500_000)
        save_geotiff(self.OUTPUT_SUITABILITY_TIF, self.suitability, self.profile)
        print(f"Карта пригодности сохранена: {self.OUTPUT_SUITABILITY_TIF}")

        self.binary = classify_suitability(self.suitability, self.threshold)
        save_geotiff(self.OUTPUT_BINARY_TIF, self.binary, self.profile)
        print(f"Бинарная карта сохранена: {self.OUTPUT_BINARY_TIF}")

        self.summary = suitability_summary(self.suitability, threshold=self.threshold)
        print(f"Пригодных пикселей: {self.summary['n_suitable']} из {self.summary['n_valid']}")

    def draw_maps(self):
        # 13) Рисуем карты
        print(f"\n-- 13. Рисуем карты ({self.IN_ID})")
        title = ''
        if self.species != '':
            title = f"Карта вероятности присутствия вида {self.species} ({self.IN_ID})"
        title = title + f"\nМодель: {self.IN_MODEL}, уник. точек: {self.n_presence}, ROC-AUC: {self.auc:.3f}"
        draw_map(self.OUTPUT_SUITABILITY_TIF, self.OUTPUT_SUITABILITY_JPG, title,
                 self.presence['lon'], self.presence['lat'], basemap=self.BASEMAP)

        binary_title = f"Бинарная карта пригодности ({self.THRESHOLD_METHOD}, порог {self.threshold:.3f})"
        if self.species != '':
            binary_title = f"{self.species}: " + binary_title
        draw_binary_map(self.OUTPUT_BINARY_TIF, self.OUTPUT_BINARY_JPG, binary_title,
                        self.presence['lon'], self.presence['lat'], threshold=self.threshold, basemap=self.BASEMAP)
        print(f"Карты сохранены: {self.OUTPUT_SUITABILITY_JPG}, {self.OUTPUT_BINARY_JPG}")

    def save_report(self):
        report = {
            'id': self.IN_ID,
            'species': self.species,
            'model': self.IN_MODEL,
            'extent': list(self.extent),
            'predictors': self.band_names,
            'n_occurrences': len(self.occ),
            'n_presence': self.n_presence,
            'n_background': len(self.background),
            'evaluation': self.evaluation,
            'threshold_method': self.THRESHOLD_METHOD,
            'confusion': self.confusion,
            'suitability': self.summary,
            'files': {
                'suitability_tif': self.OUTPUT_SUITABILITY_TIF,
                'binary_tif': self.OUTPUT_BINARY_TIF,
                'points_csv': self.POINTS_CSV,
            },
        }
        write_json_report(self.REPORT_JSON, report)
        print(f"Отчёт сохранён: {self.REPORT_JSON}")
        return report

    def run(self, draw=True):
        self._set_status('running')
        try:
            self.load_occurrences()
            self.compute_extent()
            self.prepare_predictors()
            self.load_predictors()
            self.prepare_data()
            self.generate_background()
            self.extract_features()
            self.draw_histograms()
            self.split_train_test()
            self.train_model()
            self.evaluate()
            self.predict_current()
            if draw:
                self.draw_maps()
            report = self.save_report()
        except Exception as e:
            self._set_status('error', str(e))
            raise

        print("\n-- Моделирование завершено")
        self._set_status('done')
        return report
