from .batch import BatchImporter, ImportReport, flatten_outline
from .outline import OutlineNode, parse_mlo_xml

__all__ = ["BatchImporter", "ImportReport", "OutlineNode", "flatten_outline", "parse_mlo_xml"]
