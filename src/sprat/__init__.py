"""
sprat is an incremental asset pipeline for static sites: templates, styles,
scripts, images, icon sprites and fonts, rebuilt on change and served with
live reload.
"""
from .cache import AggregationCache
from .config import BuildSettings, ConfigError, load_settings
from .core import Asset, Bundler, Stage, StagePlan, Step, StepUnavailableException, TransformError
from .css import StyleCompileStep
from .custody import Custodian, FileRecord
from .dependencies import Dependency, PipDependency
from .images import ImageOptimizeStep
from .jinja import TemplateRenderStep
from .orchestrator import Orchestrator, StageRunner
from .paths import GlobMatcher, Matcher
from .recipe import build_stages
from .scripts import ScriptBundleStep
from .simple import ConcatBundler, RawCopyStep
from .svg import SpriteBundler, SpriteSymbolStep
