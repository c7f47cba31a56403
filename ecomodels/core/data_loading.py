import io
import os

import pandas as pd

# Пары названий столбцов с координатами, в порядке приоритета (последняя найденная выигрывает у предыдущих)
COORDINATE_COLUMNS = [
    ('lon', 'lat'),
    ('Longitude', 'Latitude'),
    ('longitude', 'latitude'),
    ('decimalLongitude', 'decimalLatitude'),
]


def _looks_like_path(source):
    # дамп csv - это хотя бы две строки или строка с разделителями
    text = source.strip()
    if '\n' in text:
        return False
    return text.lower().endswith(('.csv', '.tsv', '.txt')) or not any(s in text for s in ('\t', ';', ','))


def read_occurrence_table(source, sep=None):
    """
    Читает таблицу наблюдений: путь к CSV/TSV либо сам текст csv (дамп).

    Args:
        source (str): Путь к файлу или содержимое csv.
        sep (str): Разделитель. Если None, определяется автоматически (',', ';' или табуляция).

    Returns:
        pd.DataFrame: Сырые записи наблюдений.
    """
    if source is None or str(source).strip() == '':
        raise ValueError('Входной файл пустой.')

    if os.path.isfile(source):  # если это путь к файлу, читаем файл, иначе считаем дампом csv
        with open(source, 'r', encoding='utf-8') as file:
            text = file.read()
    elif _looks_like_path(source):
        raise FileNotFoundError(f"Файл с наблюдениями не найден: {source}")
    else:
        text = source

    if text.strip() == '':
        raise ValueError('Входной файл пустой.')

    if sep is None:
        header = text.splitlines()[0]
        counts = {s: header.count(s) for s in ('\t', ';', ',')}
        sep = max(counts, key=counts.get)

    df = pd.read_csv(io.StringIO(text), sep=sep, index_col=False, on_bad_lines='skip', low_memory=False)
    print(f"Всего загружено записей: {len(df)}")
    return df


def detect_coordinate_columns(df):
    """Определяет названия столбцов с долготой и широтой. Возвращает (lon_col, lat_col)."""
    lon_col = lat_col = None
    for lon_name, lat_name in COORDINATE_COLUMNS:
        if lon_name in df.columns and lat_name in df.columns:
            lon_col, lat_col = lon_name, lat_name

    if lat_col is None:
        raise ValueError('Ошибка обработки csv. Не найдены столбцы с координатами '
                         '(lon/lat, longitude/latitude, decimalLongitude/decimalLatitude).')
    return lon_col, lat_col


def detect_species(df):
    if 'species' in df.columns:
        species = df['species'].dropna().unique()
        if len(species) == 1:
            print(f"Определён вид: {species[0]}")
            return str(species[0])
    return ''


def filter_gbif_records(df):
    """Фильтрация мусорных данных из GBIF: большая неточность координат и записи eBird (EOA)."""
    if 'coordinateUncertaintyInMeters' in df.columns:
        uncertainty = pd.to_numeric(df['coordinateUncertaintyInMeters'], errors='coerce').fillna(0)
        df = df[uncertainty < 1000]

    if 'collectionCode' in df.columns:
        df = df[df['collectionCode'] != 'EOA']

    print(f"Осталось записей после фильтрации: {len(df)}")
    return df


def load_occurrences(df, lon_col, lat_col):
    """Оставляет только координаты присутствий, удаляет пустые и некорректные значения.
       Возвращает DataFrame со столбцами lon, lat."""
    if lon_col not in df.columns or lat_col not in df.columns:
        raise ValueError(f"В CSV нет столбцов {lon_col}/{lat_col}")

    occ = pd.DataFrame({
        'lon': pd.to_numeric(df[lon_col], errors='coerce'),
        'lat': pd.to_numeric(df[lat_col], errors='coerce'),
    })
    n_before = len(occ)
    occ = occ.dropna()
    n_na = n_before - len(occ)
    if n_na > 0:
        print(f"Удалено записей без координат: {n_na}")

    # Базовая фильтрация координат
    occ = occ[(occ['lon'] >= -180) & (occ['lon'] <= 180) & (occ['lat'] >= -90) & (occ['lat'] <= 90)]
    occ = occ.reset_index(drop=True)
    return occ
