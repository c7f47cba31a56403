# ecomodels/cli/ecomodels_cli.py
"""
Командная строка: моделирование ареала вида (sdm) и анализ ряда NDVI (timeseries).
"""

import argparse
import sys

import requests

from ecomodels import __version__
from ecomodels.config import DEFAULT_SDM_CONFIG, DEFAULT_TS_CONFIG, load_config
from ecomodels.core.modeling import MODELS
from ecomodels.core.worldclim import WORLDCLIM_RESOLUTIONS
from ecomodels.sdm import SpeciesDistributionModel
from ecomodels.timeseries import NDVITimeSeries

# ошибки, о которых достаточно сообщить и завершиться с кодом 1
HANDLED_ERRORS = (ValueError, FileNotFoundError, RuntimeError, requests.RequestException)


def create_parser():
    parser = argparse.ArgumentParser(
        prog="ecomodels",
        description="Модели ареалов видов (GLM) и анализ временных рядов NDVI",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Доступные команды")

    sdm_parser = subparsers.add_parser("sdm", help="Модель ареала вида по точкам наблюдений")
    sdm_parser.add_argument("--csv", dest="IN_CSV", help="CSV с наблюдениями (в т.ч. выгрузка GBIF)")
    sdm_parser.add_argument("--config", help="JSON с параметрами")
    sdm_parser.add_argument("--id", dest="IN_ID", help="Идентификатор прогона")
    sdm_parser.add_argument("--download", dest="DOWNLOAD", action="store_true", default=None,
                            help="Скачать слои WorldClim")
    sdm_parser.add_argument("--res", dest="WORLDCLIM_RES", choices=WORLDCLIM_RESOLUTIONS, help="Разрешение WorldClim")
    sdm_parser.add_argument("--rasters", dest="RAW_RASTER_DIR", help="Папка с исходными растрами")
    sdm_parser.add_argument("--output", dest="OUTPUT_DIR", help="Папка с результатами")
    sdm_parser.add_argument("--extent", dest="EXTENT", type=float, nargs=4,
                            metavar=("MIN_LON", "MIN_LAT", "MAX_LON", "MAX_LAT"), help="Охват моделирования")
    sdm_parser.add_argument("--buffer", dest="EXTENT_BUFFER", type=float, help="Отступ вокруг точек, градусы")
    sdm_parser.add_argument("--model", dest="IN_MODEL", choices=MODELS, help="Модель")
    sdm_parser.add_argument("--threshold", dest="THRESHOLD_METHOD", help="Метод выбора порога")
    sdm_parser.add_argument("--seed", dest="RANDOM_SEED", type=int, help="Зерно генератора случайных чисел")
    sdm_parser.add_argument("--histograms", dest="DO_GISTO", action="store_const", const=1,
                            help="Построить гистограммы предикторов")
    sdm_parser.add_argument("--basemap", dest="BASEMAP", action="store_true", default=None,
                            help="Подложка OpenStreetMap на картах")
    sdm_parser.add_argument("--no-maps", dest="draw", action="store_false", help="Не рисовать карты")

    ts_parser = subparsers.add_parser("timeseries", help="Модели среднего и AR(p) для ряда NDVI")
    ts_parser.add_argument("--csv", dest="IN_CSV", help="CSV с помесячным рядом")
    ts_parser.add_argument("--config", help="JSON с параметрами")
    ts_parser.add_argument("--id", dest="IN_ID", help="Идентификатор прогона")
    ts_parser.add_argument("--date-column", dest="DATE_COL", help="Столбец с датой")
    ts_parser.add_argument("--column", dest="VALUE_COL", help="Столбец со значениями (по умолчанию ndvi)")
    ts_parser.add_argument("--exog", dest="EXOG_COL", help="Внешний регрессор, например rain")
    ts_parser.add_argument("--order", dest="AR_ORDER", type=int, help="Порядок AR модели")
    ts_parser.add_argument("--lags", dest="LB_LAGS", type=int, help="Лагов в тесте Льюнга-Бокса")
    ts_parser.add_argument("--forecast", dest="FORECAST_STEPS", type=int, help="Шагов прогноза, мес.")
    ts_parser.add_argument("--output", dest="OUTPUT_DIR", help="Папка с результатами")
    ts_parser.add_argument("--no-plots", dest="draw", action="store_false", help="Не рисовать графики")

    return parser


def _collect_config(args, defaults, keys):
    overrides = {key: getattr(args, key, None) for key in keys}
    config = load_config(args.config, defaults=defaults, overrides=overrides)
    if not config.get('IN_CSV'):
        raise ValueError("Не указан CSV с данными (--csv или IN_CSV в конфигурации).")
    return config


def cmd_sdm(args):
    config = _collect_config(args, DEFAULT_SDM_CONFIG, DEFAULT_SDM_CONFIG.keys())
    report = SpeciesDistributionModel(config).run(draw=args.draw)
    print(f"AUC: {report['evaluation']['auc']:.3f}, результаты: {report['files']['suitability_tif']}")
    return 0


def cmd_timeseries(args):
    config = _collect_config(args, DEFAULT_TS_CONFIG, DEFAULT_TS_CONFIG.keys())
    report = NDVITimeSeries(config).run(draw=args.draw)
    print(f"Лучшая модель по AIC: {report['best_model']}")
    return 0


def main(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)

    commands = {
        "sdm": cmd_sdm,
        "timeseries": cmd_timeseries,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0 if args.command is None else 1

    try:
        return handler(args)
    except HANDLED_ERRORS as e:
        print(f"Ошибка: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
