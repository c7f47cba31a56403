from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from statsmodels.stats.diagnostic import acorr_ljungbox
from statsmodels.tsa.arima.model import ARIMA
from statsmodels.tsa.stattools import acf


def load_timeseries(path, date_col='date', value_cols=None):
    """
    Загружает CSV и приводит его к помесячной таблице временного ряда.

    Args:
        path (str): Путь к CSV.
        date_col (str): Столбец с датой. Если его нет, но есть year и month - дата собирается из них.
        value_cols (list): Столбцы со значениями (по умолчанию - все числовые, кроме даты).

    Returns:
        pd.DataFrame: Индекс - начало месяца (частота 'MS'); повторы месяцев усреднены,
                      пропущенные месяцы вставлены как NaN.
    """
    df = pd.read_csv(path)

    if date_col in df.columns:
        dates = pd.to_datetime(df[date_col], errors='coerce')
    elif 'year' in df.columns and 'month' in df.columns:
        dates = pd.to_datetime(dict(year=df['year'], month=df['month'], day=1), errors='coerce')
        df = df.drop(columns=['year', 'month'])
    else:
        raise ValueError(f"В CSV нет столбца с датой '{date_col}' (или пары year/month).")

    if dates.isna().all():
        raise ValueError(f"Не удалось распознать даты в столбце '{date_col}'.")
    n_bad = int(dates.isna().sum())
    if n_bad > 0:
        print(f"Отброшено строк с нераспознанной датой: {n_bad}")

    if value_cols is None:
        value_cols = [c for c in df.columns if c != date_col and pd.api.types.is_numeric_dtype(df[c])]
    else:
        missing = [c for c in value_cols if c not in df.columns]
        if missing:
            raise ValueError(f"В CSV нет столбцов: {', '.join(missing)}")
    if not value_cols:
        raise ValueError("В CSV нет числовых столбцов со значениями.")

    month = dates.dt.to_period('M').dt.to_timestamp()
    values = df[value_cols].apply(pd.to_numeric, errors='coerce')
    table = values[month.notna()].groupby(month[month.notna()]).mean()
    table.index = pd.DatetimeIndex(table.index, name='month')
    table = table.asfreq('MS')
    print(f"Загружено месяцев: {len(table)} ({table.index[0]:%Y-%m} - {table.index[-1]:%Y-%m})")
    return table


def count_missing(df):
    return {col: int(n) for col, n in df.isna().sum().items()}


def _check_series(series, order):
    series = pd.Series(series, dtype=float)
    n_obs = int(series.notna().sum())
    if n_obs == 0:
        raise ValueError("Ряд не содержит ни одного значения.")
    if n_obs < order + 3:
        raise ValueError(f"Слишком короткий ряд для модели порядка {order}: {n_obs} наблюдений.")
    return series


@dataclass
class TSModelFit:
    """Результат подгонки модели временного ряда."""
    name: str
    order: int
    params: pd.Series
    fitted: pd.Series
    residuals: pd.Series
    sigma2: float
    aic: float
    bic: float
    result: object = field(repr=False, default=None)

    def forecast(self, steps=12, exog=None, alpha=0.05):
        """Прогноз на steps шагов вперёд: среднее и доверительный интервал уровня 1 - alpha."""
        if steps <= 0:
            raise ValueError("Количество шагов прогноза должно быть положительным.")
        frame = self.result.get_forecast(steps=steps, exog=exog).summary_frame(alpha=alpha)
        return pd.DataFrame({
            'mean': frame['mean'],
            'lower': frame['mean_ci_lower'],
            'upper': frame['mean_ci_upper'],
        })


def _fit_arima(series, order, name, exog=None):
    model = ARIMA(series, exog=exog, order=(order, 0, 0), trend='c')
    result = model.fit()
    params = pd.Series(np.asarray(result.params), index=list(result.param_names))
    return TSModelFit(
        name=name,
        order=order,
        params=params,
        fitted=pd.Series(np.asarray(result.fittedvalues), index=series.index, name='fitted'),
        residuals=pd.Series(np.asarray(result.resid), index=series.index, name='residuals'),
        sigma2=float(params['sigma2']),
        aic=float(result.aic),
        bic=float(result.bic),
        result=result,
    )


def fit_mean_model(series):
    """Модель белого шума (MEAN): y_t = c + e_t. Прогноз - среднее ряда."""
    series = _check_series(series, 0)
    return _fit_arima(series, 0, 'MEAN')


def fit_ar_model(series, order=2, exog=None):
    """
    Авторегрессионная модель AR(p) с константой: y_t = c + phi_1 y_{t-1} + ... + phi_p y_{t-p} + e_t.

    Args:
        series (pd.Series): Помесячный ряд (например, NDVI).
        order (int): Порядок p.
        exog (pd.DataFrame | pd.Series): Внешний регрессор (например, осадки), выровненный по индексу ряда.
    """
    if order < 1:
        raise ValueError("Порядок AR модели должен быть не меньше 1.")
    series = _check_series(series, order)
    if exog is not None:
        exog = pd.DataFrame(exog).reindex(series.index)
        if exog.isna().any().any():
            raise ValueError("Во внешнем регрессоре есть пропуски, модель с ним не подгоняется.")
    name = f"AR({order})" if exog is None else f"AR({order})+{'+'.join(map(str, exog.columns))}"
    return _fit_arima(series, order, name, exog=exog)


def residual_acf(residuals, nlags=24):
    """Автокорреляционная функция остатков с границами ±1.96/sqrt(n)."""
    resid = pd.Series(residuals, dtype=float).dropna()
    n = len(resid)
    if n < 2:
        raise ValueError("Недостаточно остатков для расчёта ACF.")
    nlags = int(min(nlags, n - 1))
    values = acf(resid.values, nlags=nlags, fft=False)
    bound = 1.96 / np.sqrt(n)
    return pd.DataFrame({
        'lag': np.arange(nlags + 1),
        'acf': values,
        'lower': -bound,
        'upper': bound,
    })


def ljung_box(residuals, lags=10, model_df=0):
    """Тест Льюнга-Бокса: есть ли автокорреляция в остатках до лага lags."""
    resid = pd.Series(residuals, dtype=float).dropna()
    lags = int(min(lags, len(resid) - 1))
    if lags <= model_df:
        raise ValueError(f"Число лагов ({lags}) должно быть больше числа параметров модели ({model_df}).")
    table = acorr_ljungbox(resid.values, lags=[lags], model_df=model_df)
    table.index = pd.Index([lags], name='lag')
    return table


def compare_models(fits, lags=10):
    """Сводная таблица моделей: дисперсия остатков, AIC, BIC и p-значение теста Льюнга-Бокса."""
    rows = []
    for fit in fits:
        lb = ljung_box(fit.residuals, lags=lags, model_df=fit.order)
        rows.append({
            'model': fit.name,
            'sigma2': fit.sigma2,
            'aic': fit.aic,
            'bic': fit.bic,
            'lb_stat': float(lb['lb_stat'].iloc[0]),
            'lb_pvalue': float(lb['lb_pvalue'].iloc[0]),
        })
    return pd.DataFrame(rows).set_index('model')
