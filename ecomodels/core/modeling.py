import numpy as np
import pandas as pd
import statsmodels.api as sm
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import train_test_split

MODELS = ('GLM', 'RandomForest')


class BinomialGLM:
    """
    Логистическая регрессия (GLM с биномиальным распределением и logit-связью)
    для моделирования ареала вида. Обёртка над statsmodels с интерфейсом
    predict_proba / feature_importances_, как у моделей scikit-learn.

    Args:
        feature_names (list): Названия предикторов (для таблицы коэффициентов).
    """
    def __init__(self, feature_names=None):
        self.feature_names = list(feature_names) if feature_names is not None else None
        self.n_features = None
        self.result = None

    def _as_matrix(self, X):
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        return X

    def _design(self, X):
        # свободный член добавляется всегда, даже если в X есть постоянный столбец
        return sm.add_constant(X, has_constant='add')

    def fit(self, X, y):
        """
        Обучает GLM методом IRLS.

        Args:
            X (np.ndarray): Предикторы, форма (n_samples, n_features).
            y (np.ndarray): Метки 1 (присутствие) / 0 (псевдоотсутствие).
        """
        X = self._as_matrix(X)
        y = np.asarray(y, dtype=float)
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"Количество строк X ({X.shape[0]}) и y ({y.shape[0]}) не совпадает.")
        if len(np.unique(y)) < 2:
            raise ValueError("Для обучения нужны обе метки: присутствия (1) и псевдоотсутствия (0).")

        self.n_features = X.shape[1]
        if self.feature_names is None:
            self.feature_names = [f"x{i + 1}" for i in range(self.n_features)]
        if len(self.feature_names) != self.n_features:
            raise ValueError(f"Ожидалось {len(self.feature_names)} признаков, но получено {self.n_features}.")

        model = sm.GLM(y, self._design(X), family=sm.families.Binomial())
        self.result = model.fit()
        return self

    def _check_fitted(self):
        if self.result is None:
            raise RuntimeError("Модель не была обучена. Вызовите метод .fit() сначала.")

    @property
    def aic(self):
        self._check_fitted()
        return float(self.result.aic)

    @property
    def coefficients(self):
        """Таблица коэффициентов: оценка, стандартная ошибка, z и p-значение."""
        self._check_fitted()
        index = ['(Intercept)'] + list(self.feature_names)
        return pd.DataFrame({
            'coef': np.asarray(self.result.params),
            'std_err': np.asarray(self.result.bse),
            'z': np.asarray(self.result.tvalues),
            'p_value': np.asarray(self.result.pvalues),
        }, index=index)

    @property
    def feature_importances_(self):
        # важность признака - модуль z-статистики его коэффициента (без свободного члена)
        self._check_fitted()
        return np.abs(np.asarray(self.result.tvalues)[1:])

    def summary(self):
        self._check_fitted()
        return str(self.result.summary(xname=['(Intercept)'] + list(self.feature_names)))

    def predict_proba(self, X):
        """
        Предсказывает вероятность присутствия вида.

        Returns:
            np.ndarray: Форма (n, 2): вероятности отсутствия и присутствия.
        """
        self._check_fitted()
        X = self._as_matrix(X)
        if X.shape[1] != self.n_features:
            raise ValueError(f"Ожидалось {self.n_features} признаков, но получено {X.shape[1]}.")
        probabilities = np.asarray(self.result.predict(self._design(X)))
        return np.column_stack((1 - probabilities, probabilities))


def build_model(name='GLM', random_seed=42, feature_names=None):
    if name == 'GLM':
        return BinomialGLM(feature_names=feature_names)
    if name == 'RandomForest':
        return RandomForestClassifier(
            n_estimators=500,
            n_jobs=-1,
            random_state=random_seed,
            class_weight="balanced_subsample",
            max_depth=10
        )
    raise ValueError(f"Неизвестная модель: {name}. Возможные: {', '.join(MODELS)}")


def split_train_test(X, y, test_size=0.2, random_seed=42):
    return train_test_split(X, y, test_size=test_size, stratify=y, random_state=random_seed)


# Вспомогательная функция предсказания по стеку батчами
def predict_suitability_for_stack(model, stack, valid_mask, batch_size=500_000):
    bands, H, W = stack.shape
    flat = stack.reshape(bands, -1).T  # (H*W, bands)
    suitability_flat = np.full(H * W, np.nan, dtype="float32")
    valid_idx = np.flatnonzero(valid_mask.ravel())
    for start in range(0, len(valid_idx), batch_size):
        sel = valid_idx[start:start + batch_size]
        pred = model.predict_proba(flat[sel])[:, 1].astype("float32")
        suitability_flat[sel] = pred
    return suitability_flat.reshape(H, W)


def _threshold_table(p, a):
    """Для каждого кандидата порога t (все уникальные прогнозы) считает матрицу ошибок при правиле >= t."""
    p = np.asarray(p, dtype=float)
    a = np.asarray(a, dtype=float)
    if p.size == 0 or a.size == 0:
        raise ValueError("Для оценки нужны и присутствия, и отсутствия.")

    tr = np.unique(np.concatenate([p, a]))
    p_sorted = np.sort(p)
    a_sorted = np.sort(a)
    tp = p.size - np.searchsorted(p_sorted, tr, side='left')
    fp = a.size - np.searchsorted(a_sorted, tr, side='left')
    fn = p.size - tp
    tn = a.size - fp
    return tr, tp, fp, fn, tn


def _kappa(tp, fp, fn, tn):
    n = tp + fp + fn + tn
    po = (tp + tn) / n
    pe = ((tp + fp) * (tp + fn) + (fn + tn) * (fp + tn)) / (n * n)
    with np.errstate(divide='ignore', invalid='ignore'):
        kappa = np.where(pe < 1, (po - pe) / (1 - pe), 0.0)
    return kappa


def compute_thresholds(p, a, sensitivity=0.9):
    """
    Пороги для перевода карты пригодности в бинарную (присутствие/отсутствие).

    Args:
        p (np.ndarray): Прогнозы модели в точках присутствия.
        a (np.ndarray): Прогнозы модели в точках (псевдо)отсутствия.
        sensitivity (float): Целевая чувствительность для порога 'sensitivity'.

    Returns:
        dict: kappa - максимум каппы Коэна;
              spec_sens - максимум суммы чувствительности и специфичности;
              no_omission - наибольший порог, при котором не пропущено ни одного присутствия;
              prevalence - смоделированная распространённость ближе всего к наблюдаемой;
              equal_sens_spec - чувствительность равна специфичности;
              sensitivity - чувствительность ближе всего к заданной.
    """
    tr, tp, fp, fn, tn = _threshold_table(p, a)
    n_p = tp + fn
    n_a = fp + tn
    sens = tp / n_p
    spec = tn / n_a
    n = n_p + n_a
    observed_prevalence = n_p / n
    modeled_prevalence = (tp + fp) / n

    return {
        'kappa': float(tr[np.argmax(_kappa(tp, fp, fn, tn))]),
        'spec_sens': float(tr[np.argmax(sens + spec)]),
        'no_omission': float(np.min(p)),
        'prevalence': float(tr[np.argmin(np.abs(modeled_prevalence - observed_prevalence))]),
        'equal_sens_spec': float(tr[np.argmin(np.abs(sens - spec))]),
        'sensitivity': float(tr[np.argmin(np.abs(sens - sensitivity))]),
    }


def confusion_at_threshold(p, a, threshold):
    p = np.asarray(p, dtype=float)
    a = np.asarray(a, dtype=float)
    tp = int(np.sum(p >= threshold))
    fn = int(p.size - tp)
    fp = int(np.sum(a >= threshold))
    tn = int(a.size - fp)
    sens = tp / p.size if p.size else np.nan
    spec = tn / a.size if a.size else np.nan
    kappa = float(_kappa(np.array(tp), np.array(fp), np.array(fn), np.array(tn))) if (p.size and a.size) else np.nan
    return {
        'threshold': float(threshold),
        'tp': tp, 'fp': fp, 'fn': fn, 'tn': tn,
        'sensitivity': sens,
        'specificity': spec,
        'tss': sens + spec - 1,
        'kappa': kappa,
    }


def evaluate_model(y_true, y_prob, sensitivity=0.9):
    """ROC AUC, корреляция и пороги для отложенной выборки."""
    y_true = np.asarray(y_true).astype(int)
    y_prob = np.asarray(y_prob, dtype=float)
    p = y_prob[y_true == 1]
    a = y_prob[y_true == 0]
    if p.size == 0 or a.size == 0:
        raise ValueError("В тестовой выборке должны быть и присутствия, и отсутствия.")

    return {
        'auc': float(roc_auc_score(y_true, y_prob)),
        'cor': float(np.corrcoef(y_true, y_prob)[0, 1]) if np.std(y_prob) > 0 else 0.0,
        'n_presence': int(p.size),
        'n_absence': int(a.size),
        'thresholds': compute_thresholds(p, a, sensitivity),
    }


def classify_suitability(suitability, threshold):
    """Бинарная карта: 1 - пригодно (>= threshold), 0 - непригодно, NaN - нет данных."""
    binary = (suitability >= threshold).astype("float32")
    binary[np.isnan(suitability)] = np.nan
    return binary


def suitability_summary(suitability, levels=(0.05, 0.5, 0.95), threshold=None):
    """Количество пикселей с пригодностью выше заданных уровней."""
    valid = ~np.isnan(suitability)
    summary = {'n_valid': int(valid.sum())}
    for level in levels:
        summary[f"n_above_{level}"] = int(np.sum(suitability[valid] > level))
    if threshold is not None:
        summary['threshold'] = float(threshold)
        summary['n_suitable'] = int(np.sum(suitability[valid] >= threshold))
        summary['suitable_fraction'] = summary['n_suitable'] / summary['n_valid'] if summary['n_valid'] else 0.0
    return summary
