import re

import matplotlib
matplotlib.use("Agg")  # рисуем только в файлы

import contextily as ctx
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import ListedColormap
from matplotlib.patches import Patch
from matplotlib.ticker import FuncFormatter, MaxNLocator
from pyproj import Transformer
from rasterio.enums import Resampling
from rasterio.transform import array_bounds
from statsmodels.graphics.tsaplots import plot_acf

from .gis_utils import read_and_to_3857
from .helpers import format_float, get_predictor_stats

# Описания 19 биоклиматических переменных WorldClim
BIO_INFO = {
    1: "BIO1: Среднегодовая температура (Annual mean temperature)",
    2: "BIO2: Средняя суточная температурная амплитуда (Mean diurnal range)",
    3: "BIO3: Изотермичность (Isothermality, BIO2/BIO7 * 100)",
    4: "BIO4: Сезонность температуры (Temperature seasonality, ст. отклонение * 100)",
    5: "BIO5: Максимальная температура самого тёплого месяца (Max temperature of warmest month)",
    6: "BIO6: Минимальная температура самого холодного месяца (Min temperature of coldest month)",
    7: "BIO7: Годовая температурная амплитуда (Annual temperature range, BIO5 - BIO6)",
    8: "BIO8: Средняя температура самого влажного квартала (Mean temperature of wettest quarter)",
    9: "BIO9: Средняя температура самого сухого квартала (Mean temperature of driest quarter)",
    10: "BIO10: Средняя температура самого тёплого квартала (Mean temperature of warmest quarter)",
    11: "BIO11: Средняя температура самого холодного квартала (Mean temperature of coldest quarter)",
    12: "BIO12: Годовое количество осадков (Annual precipitation)",
    13: "BIO13: Осадки самого влажного месяца (Precipitation of wettest month)",
    14: "BIO14: Осадки самого сухого месяца (Precipitation of driest month)",
    15: "BIO15: Сезонность осадков (Precipitation seasonality)",
    16: "BIO16: Осадки самого влажного квартала (Precipitation of wettest quarter)",
    17: "BIO17: Осадки самого сухого квартала (Precipitation of driest quarter)",
    18: "BIO18: Осадки самого тёплого квартала (Precipitation of warmest quarter)",
    19: "BIO19: Осадки самого холодного квартала (Precipitation of coldest quarter)",
}


def describe_band(band_name):
    """Подпись слоя: для wc2.1_10m_bio_5 -> описание BIO5, иначе само имя."""
    match = re.search(r'bio_?(\d+)$', band_name, flags=re.IGNORECASE)
    if match and int(match.group(1)) in BIO_INFO:
        return BIO_INFO[int(match.group(1))]
    return f'Значения {band_name}'


def _prepare_map_axes(transform, width, height, basemap):
    # Границы растра в координатах EPSG:3857
    xmin, ymin, xmax, ymax = array_bounds(height, width, transform)

    # Поля: одинаковая ширина в метрах, не менее 5% от каждой стороны
    pad_m = max((xmax - xmin) * 0.05, (ymax - ymin) * 0.05)
    xmin_v, xmax_v = xmin - pad_m, xmax + pad_m
    ymin_v, ymax_v = ymin - pad_m, ymax + pad_m

    # Подбор ориентации и размеров фигуры под соотношение сторон области
    ratio = (xmax_v - xmin_v) / (ymax_v - ymin_v)
    long_inches = 10.0
    dpi = 150
    if ratio >= 1.0:
        fig_w, fig_h = long_inches, max(long_inches / ratio, 1.0)
    else:
        fig_w, fig_h = max(long_inches * ratio, 1.0), long_inches

    fig, ax = plt.subplots(figsize=(fig_w, fig_h), dpi=dpi)
    fig.patch.set_facecolor('white')
    ax.set_xlim(xmin_v, xmax_v)
    ax.set_ylim(ymin_v, ymax_v)
    ax.set_aspect('equal', adjustable='box')

    if basemap:
        # Подложка OSM (нужен доступ к сети)
        ctx.add_basemap(ax, source=ctx.providers.OpenStreetMap.Mapnik)

    # Оси в градусах
    to_4326 = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)
    cx = (xmin_v + xmax_v) / 2.0
    cy = (ymin_v + ymax_v) / 2.0

    def x_deg_formatter(x, pos):
        lon, _ = to_4326.transform(x, cy)
        return f"{lon:.2f}°"

    def y_deg_formatter(y, pos):
        _, lat = to_4326.transform(cx, y)
        return f"{lat:.2f}°"

    ax.xaxis.set_major_formatter(FuncFormatter(x_deg_formatter))
    ax.yaxis.set_major_formatter(FuncFormatter(y_deg_formatter))
    ax.xaxis.set_major_locator(MaxNLocator(nbins=6))
    ax.yaxis.set_major_locator(MaxNLocator(nbins=6))
    ax.tick_params(axis='both', which='major', labelsize=7, direction='out', top=False, right=False)
    for spine in ax.spines.values():
        spine.set_linewidth(0.8)
        spine.set_edgecolor('#666666')

    return fig, ax, (xmin, xmax, ymin, ymax)


def _draw_points(ax, lons, lats):
    lons = np.asarray(lons, dtype=float)
    lats = np.asarray(lats, dtype=float)
    if lons.size == 0:
        return
    to_3857 = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
    x_3857, y_3857 = to_3857.transform(lons, lats)
    ax.scatter(x_3857, y_3857, marker='o', s=6, color='red', alpha=0.7, zorder=100)
    ax.scatter(x_3857, y_3857, marker='o', s=4, color='yellow', alpha=0.7, zorder=101)


def _save_map(fig, ax, title, output_path):
    ax.set_title(title, pad=8, fontsize=9)
    fig.tight_layout()
    fig.savefig(output_path, dpi=fig.dpi, bbox_inches="tight", facecolor=fig.get_facecolor())
    plt.close(fig)
    return output_path


def draw_map(suitability_tif, output_jpg, title='', lons=(), lats=(), basemap=False):
    """Карта вероятности присутствия (0..1) с точками наблюдений."""
    data, transform, width, height = read_and_to_3857(suitability_tif)
    fig, ax, extent = _prepare_map_axes(transform, width, height, basemap)

    # Колормэп с прозрачностью по NaN (нет данных)
    cmap = plt.cm.magma.copy()
    cmap.set_bad(alpha=0.0)
    im = ax.imshow(data, extent=extent, origin="upper", cmap=cmap, vmin=0.0, vmax=1.0,
                   interpolation="nearest", alpha=0.8 if basemap else 1.0)
    cbar = fig.colorbar(im, ax=ax, fraction=0.035, pad=0.03)
    cbar.set_label("Вероятность присутствия")

    _draw_points(ax, lons, lats)
    return _save_map(fig, ax, title or "Карта вероятности присутствия вида", output_jpg)


def draw_binary_map(binary_tif, output_jpg, title='', lons=(), lats=(), threshold=None, basemap=False):
    """Бинарная карта пригодности (пригодно / непригодно по порогу)."""
    # для классов 0/1 билинейная интерполяция не годится
    data, transform, width, height = read_and_to_3857(binary_tif, resampling=Resampling.nearest)
    fig, ax, extent = _prepare_map_axes(transform, width, height, basemap)

    cmap = ListedColormap(['#d9d9d9', '#1a9850'])
    cmap.set_bad(alpha=0.0)
    ax.imshow(data, extent=extent, origin="upper", cmap=cmap, vmin=0, vmax=1,
              interpolation="nearest", alpha=0.8 if basemap else 1.0)
    label = 'Пригодно' if threshold is None else f'Пригодно (p >= {format_float(threshold)})'
    ax.legend(handles=[Patch(color='#1a9850', label=label), Patch(color='#d9d9d9', label='Непригодно')],
              loc='lower right', fontsize=7)

    _draw_points(ax, lons, lats)
    return _save_map(fig, ax, title or "Бинарная карта пригодности", output_jpg)


def create_beautiful_histogram(ax: plt.Axes, data: np.ndarray, band_name: str, bins_num: int, data_full: np.ndarray, title=''):
    """
    Рисует гистограмму значений предиктора в точках присутствия поверх распределения по всей области.
    Обе гистограммы нормализованы на максимум и построены на общих бинах.

    Returns:
        dict: Статистики значений в точках присутствия.
    """
    data = np.asarray(data, dtype=float)
    data = data[~np.isnan(data)]
    data_full = np.asarray(data_full, dtype=float)
    data_full = data_full[~np.isnan(data_full)]

    if data.size == 0 and data_full.size == 0:
        ax.set_title("Нет данных для отображения")
        return {}

    # общий диапазон бинов: по всему слою, чтобы было видно, какую часть занимает вид
    ref = data_full if data_full.size > 0 else data
    bins_range = (float(ref.min()), float(ref.max()))
    if bins_range[0] == bins_range[1]:
        bins_range = (bins_range[0] - 0.5, bins_range[1] + 0.5)

    counts_full, bin_edges = np.histogram(data_full, bins=bins_num, range=bins_range)
    counts_data, _ = np.histogram(data, bins=bins_num, range=bins_range)
    normalized_full = counts_full / counts_full.max() if counts_full.max() > 0 else counts_full.astype(float)
    normalized_data = counts_data / counts_data.max() if counts_data.max() > 0 else counts_data.astype(float)
    bin_width = bin_edges[1] - bin_edges[0]

    ax.bar(bin_edges[:-1], normalized_full, width=bin_width, align='edge',
           color='grey', edgecolor='black', alpha=0.3, label='Распределение по области')
    ax.bar(bin_edges[:-1], normalized_data, width=bin_width, align='edge',
           color='skyblue', edgecolor='black', alpha=0.7, label='Точки присутствия')

    stats_data = get_predictor_stats(data)
    if data.size > 0:
        ax.axvline(stats_data['mean'], color='red', linestyle='dashed', linewidth=1.5,
                   label=f'Среднее ({format_float(stats_data["mean"])})')
        ax.axvline(stats_data['median'], color='green', linestyle='dashed', linewidth=1.5,
                   label=f'Медиана ({format_float(stats_data["median"])})')
        ax.axvline(stats_data['p5'], color='orange', linestyle='dotted', linewidth=1)
        ax.axvline(stats_data['p95'], color='orange', linestyle='dotted', linewidth=1, label='5%/95%')

    axtitle = f'Значения для предиктора: {band_name}'
    if title != '':
        axtitle = axtitle + "\n" + title
    ax.set_title(axtitle, fontsize=12, fontweight='bold')
    ax.set_ylabel('Нормализованная частота', fontsize=10)
    ax.set_xlabel(describe_band(band_name), fontsize=7)
    ax.tick_params(axis='both', which='major', labelsize=9)
    ax.grid(axis='y', alpha=0.5)
    ax.grid(axis='x', linestyle='--', alpha=0.2)

    add_stats_to_plot(ax, stats_data, y_pos=0.95)

    handles, labels = ax.get_legend_handles_labels()
    by_label = dict(zip(labels, handles))
    ax.legend(by_label.values(), by_label.keys(), loc='upper right', fontsize=8)
    ax.set_ylim(0, 1.4)
    return stats_data


def add_stats_to_plot(ax: plt.Axes, stats: dict, y_pos: float):
    """Добавляет статистику справа от осей (координаты в долях осей)."""
    stats_text = (
        f"  Min: {format_float(stats.get('min'))}\n"
        f"  P5:  {format_float(stats.get('p5'))}\n"
        f"  Med: {format_float(stats.get('median'))}\n"
        f"  Mean:{format_float(stats.get('mean'))}\n"
        f"  P95: {format_float(stats.get('p95'))}\n"
        f"  Max: {format_float(stats.get('max'))}"
    )
    ax.text(1.02, y_pos, stats_text, transform=ax.transAxes, fontsize=9,
            verticalalignment='top', fontfamily='monospace',
            bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))


def plot_timeseries(df, output_path, columns=None, title=''):
    """Графики рядов, по одной панели на столбец."""
    columns = list(columns or df.columns)
    fig, axes = plt.subplots(len(columns), 1, figsize=(10, 3 * len(columns)), sharex=True, squeeze=False)
    for ax, col in zip(axes[:, 0], columns):
        ax.plot(df.index, df[col], color='#2c7fb8', linewidth=1.2)
        ax.set_ylabel(col)
        ax.grid(alpha=0.3)
    axes[0, 0].set_title(title or 'Временной ряд')
    axes[-1, 0].set_xlabel('Месяц')
    fig.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path


def plot_model_fit(series, fit, output_path, forecast=None):
    """Наблюдения, подогнанные значения модели и (если есть) прогноз с интервалом."""
    fig, ax = plt.subplots(figsize=(10, 4))
    ax.plot(series.index, series.values, color='black', linewidth=1, label='Наблюдения')
    ax.plot(fit.fitted.index, fit.fitted.values, color='#e6550d', linewidth=1.2, label=f'Модель {fit.name}')
    if forecast is not None:
        ax.plot(forecast.index, forecast['mean'], color='#3182bd', linewidth=1.2, label='Прогноз')
        ax.fill_between(forecast.index, forecast['lower'], forecast['upper'], color='#3182bd', alpha=0.2)
    ax.set_title(f'{series.name or "ряд"}: модель {fit.name} (AIC {fit.aic:.1f})')
    ax.grid(alpha=0.3)
    ax.legend(fontsize=8)
    fig.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path


def plot_residual_diagnostics(fit, output_path, nlags=24):
    """Остатки модели: временной ряд, ACF и гистограмма."""
    resid = fit.residuals.dropna()
    fig = plt.figure(figsize=(10, 6))
    ax_ts = fig.add_subplot(2, 1, 1)
    ax_acf = fig.add_subplot(2, 2, 3)
    ax_hist = fig.add_subplot(2, 2, 4)

    ax_ts.plot(resid.index, resid.values, color='#444444', linewidth=1)
    ax_ts.axhline(0, color='red', linewidth=0.8, linestyle='dashed')
    ax_ts.set_title(f'Остатки модели {fit.name}')
    ax_ts.grid(alpha=0.3)

    plot_acf(resid.values, ax=ax_acf, lags=int(min(nlags, len(resid) - 1)), zero=False)
    ax_acf.set_title('ACF остатков')

    ax_hist.hist(resid.values, bins=20, color='skyblue', edgecolor='black')
    ax_hist.set_title('Распределение остатков')

    fig.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path
