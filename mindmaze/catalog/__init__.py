from mindmaze.catalog.registry import Catalog, CatalogLoadError, load_catalog

__all__ = ["Catalog", "CatalogLoadError", "load_catalog"]
