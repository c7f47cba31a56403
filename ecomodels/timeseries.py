# ecomodels/timeseries.py

import os

import pandas as pd

from .config import DEFAULT_TS_CONFIG
from .core.ts_modeling import load_timeseries, count_missing, fit_mean_model, fit_ar_model
from .core.ts_modeling import residual_acf, compare_models
from .core.utils.helpers import write_json_report
from .core.utils.plot_utils import plot_timeseries, plot_model_fit, plot_residual_diagnostics


class NDVITimeSeries:
    """
    Анализ помесячного ряда NDVI: модель среднего (белый шум) против AR(p),
    диагностика остатков и, при необходимости, прогноз.
    """
    def __init__(self, config):
        for attribute_name, attribute_value in DEFAULT_TS_CONFIG.items():
            setattr(self, attribute_name, attribute_value)
        for attribute_name, attribute_value in config.items():
            setattr(self, attribute_name, attribute_value)

        self.OUTPUT_RUN_DIR = os.path.join(self.OUTPUT_DIR, str(self.IN_ID))
        self.SERIES_JPG = os.path.join(self.OUTPUT_RUN_DIR, f"series_{self.IN_ID}.jpg")
        self.FIT_JPG = os.path.join(self.OUTPUT_RUN_DIR, f"fit_{self.IN_ID}.jpg")
        self.RESIDUALS_JPG = os.path.join(self.OUTPUT_RUN_DIR, f"residuals_{self.IN_ID}.jpg")
        self.COMPARISON_CSV = os.path.join(self.OUTPUT_RUN_DIR, f"models_{self.IN_ID}.csv")
        self.FORECAST_CSV = os.path.join(self.OUTPUT_RUN_DIR, f"forecast_{self.IN_ID}.csv")
        self.REPORT_JSON = os.path.join(self.OUTPUT_RUN_DIR, f"report_{self.IN_ID}.json")

        self.forecast_table = None
        os.makedirs(self.OUTPUT_RUN_DIR, exist_ok=True)

    def load(self):
        print(f"\n-- 1. Загрузка временного ряда ({self.IN_ID})")
        value_cols = [self.VALUE_COL]
        if self.EXOG_COL:
            value_cols.append(self.EXOG_COL)
        self.df = load_timeseries(self.IN_CSV, self.DATE_COL, value_cols)
        self.series = self.df[self.VALUE_COL]
        self.exog = self.df[[self.EXOG_COL]] if self.EXOG_COL else None

    def check_missing(self):
        print(f"\n-- 2. Проверка пропусков ({self.IN_ID})")
        self.missing = count_missing(self.df)
        for col, n in self.missing.items():
            print(f"  {col:20s} пропусков: {n}")
        if self.missing[self.VALUE_COL] > 0:
            print("Внимание: в ряде есть пропущенные месяцы, модели подгоняются с пропусками.")

    def fit_mean(self):
        print(f"\n-- 3. Модель среднего (белый шум) ({self.IN_ID})")
        self.mean_fit = fit_mean_model(self.series)
        print(f"Среднее: {self.mean_fit.params['const']:.4f}, sigma2: {self.mean_fit.sigma2:.5f}, "
              f"AIC: {self.mean_fit.aic:.2f}")

    def fit_ar(self):
        print(f"\n-- 4. Авторегрессионная модель AR({self.AR_ORDER}) ({self.IN_ID})")
        self.ar_fit = fit_ar_model(self.series, self.AR_ORDER, exog=self.exog)
        for name, value in self.ar_fit.params.items():
            print(f"  {name:12s} {value:.4f}")
        print(f"sigma2: {self.ar_fit.sigma2:.5f}, AIC: {self.ar_fit.aic:.2f}")

    def diagnose(self):
        print(f"\n-- 5. Диагностика остатков ({self.IN_ID})")
        self.comparison = compare_models([self.mean_fit, self.ar_fit], lags=self.LB_LAGS)
        self.residual_acfs = {
            fit.name: residual_acf(fit.residuals, nlags=self.ACF_LAGS) for fit in (self.mean_fit, self.ar_fit)
        }
        print(self.comparison.to_string(float_format=lambda v: f"{v:.4f}"))
        self.comparison.to_csv(self.COMPARISON_CSV)

        self.best_model = self.comparison['aic'].idxmin()
        print(f"Лучшая модель по AIC: {self.best_model}")
        for name, pvalue in self.comparison['lb_pvalue'].items():
            if pvalue < 0.05:
                print(f"Внимание: в остатках модели {name} осталась автокорреляция (p = {pvalue:.4f}).")

    def forecast(self):
        if self.FORECAST_STEPS <= 0:
            return
        if self.exog is not None:
            # будущие значения внешнего регрессора неизвестны
            print("Прогноз для модели с внешним регрессором не строится.")
            return
        print(f"\n-- 6. Прогноз на {self.FORECAST_STEPS} мес. ({self.IN_ID})")
        self.forecast_table = self.ar_fit.forecast(self.FORECAST_STEPS)
        self.forecast_table.index.name = 'month'
        self.forecast_table.to_csv(self.FORECAST_CSV)
        print(f"Прогноз сохранён: {self.FORECAST_CSV}")

    def draw_plots(self):
        print(f"\n-- 7. Рисуем графики ({self.IN_ID})")
        plot_timeseries(self.df, self.SERIES_JPG, title=f"Временной ряд ({self.IN_ID})")
        plot_model_fit(self.series, self.ar_fit, self.FIT_JPG, forecast=self.forecast_table)
        plot_residual_diagnostics(self.ar_fit, self.RESIDUALS_JPG, nlags=self.ACF_LAGS)
        print(f"Графики сохранены в {self.OUTPUT_RUN_DIR}")

    def save_report(self):
        report = {
            'id': self.IN_ID,
            'column': self.VALUE_COL,
            'exog': self.EXOG_COL,
            'start': f"{self.df.index[0]:%Y-%m}",
            'end': f"{self.df.index[-1]:%Y-%m}",
            'n_months': len(self.df),
            'missing': self.missing,
            'models': {
                name: dict(row) for name, row in self.comparison.iterrows()
            },
            'params': {
                self.mean_fit.name: self.mean_fit.params.to_dict(),
                self.ar_fit.name: self.ar_fit.params.to_dict(),
            },
            'best_model': self.best_model,
        }
        if self.forecast_table is not None:
            table = self.forecast_table.copy()
            table.index = [f"{d:%Y-%m}" for d in pd.DatetimeIndex(table.index)]
            report['forecast'] = table.to_dict(orient='index')
        write_json_report(self.REPORT_JSON, report)
        print(f"Отчёт сохранён: {self.REPORT_JSON}")
        return report

    def run(self, draw=True):
        self.load()
        self.check_missing()
        self.fit_mean()
        self.fit_ar()
        self.diagnose()
        self.forecast()
        if draw:
            self.draw_plots()
        report = self.save_report()
        print("\n-- Анализ ряда завершён")
        return report
