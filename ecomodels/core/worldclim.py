"""
Загрузка климатических слоёв WorldClim 2.1.

Архивы скачиваются один раз и кэшируются в папке назначения; повторный вызов
возвращает уже распакованные GeoTIFF без обращения к сети.
"""

import glob
import os
import zipfile

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .utils.helpers import natural_sort_key

WORLDCLIM_BASE_URL = "https://geodata.ucdavis.edu/climate/worldclim/2_1/base"
WORLDCLIM_RESOLUTIONS = ('10m', '5m', '2.5m', '30s')
WORLDCLIM_VARIABLES = ('bio', 'tavg', 'tmin', 'tmax', 'prec', 'srad', 'wind', 'vapr', 'elev')

DEFAULT_RETRY = Retry(
    total=4,
    backoff_factor=2,
    status_forcelist=[429, 502, 503, 504],
    allowed_methods=["GET", "HEAD"],
    raise_on_status=False,
)

DEFAULT_TIMEOUT = 60  # секунд


def create_session(retry=None):
    """Сессия requests с повторными попытками при временных ошибках сети."""
    s = requests.Session()
    adapter = HTTPAdapter(max_retries=retry or DEFAULT_RETRY)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers["User-Agent"] = "ecomodels/0.1"
    return s


def worldclim_url(var='bio', res='10m'):
    if res not in WORLDCLIM_RESOLUTIONS:
        raise ValueError(f"Недопустимое разрешение WorldClim: {res}. Возможные: {', '.join(WORLDCLIM_RESOLUTIONS)}")
    if var not in WORLDCLIM_VARIABLES:
        raise ValueError(f"Недопустимая переменная WorldClim: {var}. Возможные: {', '.join(WORLDCLIM_VARIABLES)}")
    return f"{WORLDCLIM_BASE_URL}/wc2.1_{res}_{var}.zip"


def layer_glob(var='bio', res='10m'):
    """Шаблон имён GeoTIFF одного набора слоёв: wc2.1_10m_bio*.tif"""
    return f"wc2.1_{res}_{var}*.tif"


def _layer_pattern(dest_dir, var, res):
    return os.path.join(dest_dir, layer_glob(var, res))


def download_worldclim(dest_dir, var='bio', res='10m', session=None, timeout=DEFAULT_TIMEOUT):
    """
    Скачивает и распаковывает слои WorldClim 2.1.

    Args:
        dest_dir (str): Папка для сохранения GeoTIFF.
        var (str): Переменная ('bio' - 19 биоклиматических слоёв).
        res (str): Разрешение ('10m', '5m', '2.5m', '30s').
        session (requests.Session): Сессия для загрузки. По умолчанию create_session().
        timeout (float): Таймаут запроса в секундах.

    Returns:
        list: Отсортированный список путей к распакованным GeoTIFF.
    """
    url = worldclim_url(var, res)
    os.makedirs(dest_dir, exist_ok=True)

    existing = sorted(glob.glob(_layer_pattern(dest_dir, var, res)), key=natural_sort_key)
    if existing:
        print(f"Слои WorldClim уже загружены: {len(existing)} файлов в '{dest_dir}'")
        return existing

    archive_path = os.path.join(dest_dir, os.path.basename(url))
    if not os.path.isfile(archive_path):
        session = session or create_session()
        print(f"Загрузка {url}")
        resp = session.get(url, stream=True, timeout=timeout)
        resp.raise_for_status()
        tmp_path = archive_path + ".part"
        with open(tmp_path, 'wb') as f:
            for chunk in resp.iter_content(chunk_size=1 << 20):
                if chunk:
                    f.write(chunk)
        os.replace(tmp_path, archive_path)

    with zipfile.ZipFile(archive_path) as zipf:
        members = [m for m in zipf.namelist() if m.lower().endswith(('.tif', '.tiff'))]
        if not members:
            raise ValueError(f"В архиве {archive_path} нет GeoTIFF файлов.")
        for member in members:
            # в архиве могут быть подпапки - сохраняем только имена файлов
            target = os.path.join(dest_dir, os.path.basename(member))
            with zipf.open(member) as src, open(target, 'wb') as dst:
                dst.write(src.read())

    layers = sorted(glob.glob(_layer_pattern(dest_dir, var, res)), key=natural_sort_key)
    print(f"Распаковано слоёв: {len(layers)}")
    return layers
