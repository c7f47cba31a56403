# ecomodels/__init__.py

from ecomodels.sdm import SpeciesDistributionModel, SDMError
from ecomodels.timeseries import NDVITimeSeries
from ecomodels.config import DEFAULT_SDM_CONFIG, DEFAULT_TS_CONFIG, load_config
from ecomodels.core.data_loading import load_occurrences
from ecomodels.core.preprocessing import crop_rasters
from ecomodels.core.utils.plot_utils import draw_map, create_beautiful_histogram

__version__ = "0.1.0"
