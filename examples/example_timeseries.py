# examples/example_timeseries.py

import ecomodels

# CSV с колонками date, ndvi, rain (по одной строке на месяц)
config = {
    'IN_ID': 'ndvi',
    'IN_CSV': 'data/ndvi_monthly.csv',
    'VALUE_COL': 'ndvi',
    'AR_ORDER': 2,
    'FORECAST_STEPS': 12,
    'OUTPUT_DIR': 'output',
}

report = ecomodels.NDVITimeSeries(config).run()
for name, row in report['models'].items():
    print(f"{name:10s} AIC={row['aic']:.2f}  sigma2={row['sigma2']:.5f}  p(Ljung-Box)={row['lb_pvalue']:.3f}")

# та же модель с осадками как внешним регрессором
config.update({'IN_ID': 'ndvi_rain', 'EXOG_COL': 'rain', 'FORECAST_STEPS': 0})
ecomodels.NDVITimeSeries(config).run()
