"""
Device Description
Loads the normalized M-Bus XML (SlaveInformation + DataRecord entries)
that describes the simulated meter.
"""

import random
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from mbus_sim.codec import perturb_value
from mbus_sim.exceptions import DescriptionError
from mbus_sim.logger import get_logger

logger = get_logger(__name__)


def _is_numeric(value: str) -> bool:
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


@dataclass
class DataRecord:
    """One measured quantity of the simulated meter."""
    record_id: str
    quantity: str
    unit: str
    value: str
    function: str = ""
    storage_number: str = ""

    @property
    def numeric(self) -> bool:
        return _is_numeric(self.value)

    def refresh(self, rng: Optional[random.Random] = None) -> str:
        """Replace the value with the next simulated reading."""
        if self.numeric:
            self.value = perturb_value(self.unit, self.value, rng)
        return self.value


@dataclass
class SlaveInformation:
    """Identification block; informational only."""
    id: str = ""
    manufacturer: str = ""
    version: str = ""
    product_name: str = ""
    medium: str = ""
    access_number: str = ""
    status: str = ""
    signature: str = ""


@dataclass
class DeviceDescription:
    slave: SlaveInformation = field(default_factory=SlaveInformation)
    records: List[DataRecord] = field(default_factory=list)

    def refresh_records(self, rng: Optional[random.Random] = None) -> None:
        """Advance every record by one simulated reading."""
        for record in self.records:
            record.refresh(rng)
            logger.debug(
                "record_updated",
                quantity=record.quantity,
                unit=record.unit,
                value=record.value
            )

    def log_summary(self) -> None:
        slave = self.slave
        logger.info(
            "meter_slave_information",
            id=slave.id,
            manufacturer=slave.manufacturer,
            version=slave.version,
            medium=slave.medium,
            access_number=slave.access_number,
            status=slave.status,
            signature=slave.signature
        )
        for record in self.records:
            logger.info(
                "data_record",
                id=record.record_id,
                quantity=record.quantity,
                unit=record.unit,
                value=record.value
            )


def _text(element: Optional[ET.Element], tag: str) -> str:
    if element is None:
        return ""
    return (element.findtext(tag) or "").strip()


def parse_description(xml_text: Union[str, bytes]) -> DeviceDescription:
    """
    Parse the normalized XML produced by libmbus (``mbus-*-request-data -n``).

    Raises:
        DescriptionError: If the XML is malformed or holds no data records
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise DescriptionError(f"Failed to parse XML: {e}") from e

    if root.tag != "MBusData":
        raise DescriptionError(f"Unexpected root element <{root.tag}>, expected <MBusData>")

    info = root.find("SlaveInformation")
    slave = SlaveInformation(
        id=_text(info, "Id"),
        manufacturer=_text(info, "Manufacturer"),
        version=_text(info, "Version"),
        product_name=_text(info, "ProductName"),
        medium=_text(info, "Medium"),
        access_number=_text(info, "AccessNumber"),
        status=_text(info, "Status"),
        signature=_text(info, "Signature"),
    )

    records = [
        DataRecord(
            record_id=element.get("id", str(index)),
            quantity=_text(element, "Quantity"),
            unit=_text(element, "Unit"),
            value=_text(element, "Value"),
            function=_text(element, "Function"),
            storage_number=_text(element, "StorageNumber"),
        )
        for index, element in enumerate(root.findall("DataRecord"))
    ]

    if not records:
        raise DescriptionError("Description contains no DataRecord entries")

    return DeviceDescription(slave=slave, records=records)


def load_description(path: Union[str, Path]) -> DeviceDescription:
    """
    Load and parse a description file.

    Raises:
        DescriptionError: If the file cannot be read or parsed
    """
    try:
        xml_text = Path(path).read_bytes()
    except OSError as e:
        raise DescriptionError(f"Cannot read description {path}: {e}") from e

    description = parse_description(xml_text)
    logger.info("description_loaded", source=str(path), records=len(description.records))
    return description
