"""Read-only inspection of BPMN XML for runtime validation."""

import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from .exceptions import ValidationError

NAMESPACES = {
    'bpmn': 'http://www.omg.org/spec/BPMN/20100524/MODEL',
    'zeebe': 'http://camunda.org/schema/zeebe/1.0',
    'camunda': 'http://camunda.org/schema/1.0/bpmn',
}

MULTI_INSTANCE_BODY_SUFFIX = '#multiInstanceBody'
FAILED_TO_PARSE_BPMN_MODEL = 'Failed to parse BPMN model: {}'


def local_name(element: ET.Element) -> str:
    """Tag name without the namespace."""
    return element.tag.rpartition('}')[2]


class BpmnModel:
    """Parsed BPMN definitions with lookups by element id."""

    def __init__(self, xml: str):
        """Parse BPMN XML.

        Raises:
            ValidationError: If the XML cannot be parsed
        """
        try:
            self.root = ET.fromstring(xml.encode('utf-8') if isinstance(xml, str) else xml)
        except ET.ParseError as e:
            raise ValidationError(FAILED_TO_PARSE_BPMN_MODEL.format(e)) from e

        self._by_id: Dict[str, ET.Element] = {}
        for element in self.root.iter():
            element_id = element.get('id')
            if element_id is not None:
                self._by_id[element_id] = element

    def processes(self) -> List[ET.Element]:
        return self.root.findall('bpmn:process', NAMESPACES)

    def element(self, element_id: str) -> Optional[ET.Element]:
        return self._by_id.get(element_id)

    def has_element(self, element_id: str) -> bool:
        return element_id in self._by_id

    def element_type(self, element_id: str) -> Optional[str]:
        element = self.element(element_id)
        return local_name(element) if element is not None else None

    def process_start_events(self) -> List[ET.Element]:
        """Start events placed directly in a process, not in sub-processes."""
        events = []
        for process in self.processes():
            events.extend(process.findall('bpmn:startEvent', NAMESPACES))
        return events

    @staticmethod
    def is_none_start_event(event: ET.Element) -> bool:
        return not any(local_name(child).endswith('EventDefinition') for child in event)

    def has_none_start_event(self) -> bool:
        return any(self.is_none_start_event(e) for e in self.process_start_events())

    @staticmethod
    def execution_listener_types(element: ET.Element) -> List[str]:
        """Job types of the Zeebe execution listeners declared on an element."""
        listeners = element.findall(
            'bpmn:extensionElements/zeebe:executionListeners/zeebe:executionListener',
            NAMESPACES,
        )
        return [listener.get('type') for listener in listeners if listener.get('type')]

    def is_multi_instance(self, element_id: str) -> bool:
        if element_id.endswith(MULTI_INSTANCE_BODY_SUFFIX):
            return True
        element = self.element(element_id)
        if element is None:
            return False
        return element.find('bpmn:multiInstanceLoopCharacteristics', NAMESPACES) is not None

    def is_parallel_gateway(self, element_id: str) -> bool:
        """An active parallel gateway is one waiting for its other branches."""
        return self.element_type(element_id) == 'parallelGateway'

    def call_activity_drops_legacy_id(self, element_id: str, variable_name: str) -> bool:
        """Whether a call activity hides ``variable_name`` from the called process.

        True when ``propagateAllParentVariables`` is false and no input
        mapping targets the variable.
        """
        element = self.element(element_id)
        if element is None or local_name(element) != 'callActivity':
            return False

        extensions = element.find('bpmn:extensionElements', NAMESPACES)
        if extensions is None:
            return False

        for called in extensions.findall('zeebe:calledElement', NAMESPACES):
            propagate = called.get('propagateAllParentVariables', 'true')
            if propagate.lower() != 'false':
                continue
            inputs = extensions.findall('zeebe:ioMapping/zeebe:input', NAMESPACES)
            if not any(i.get('target') == variable_name for i in inputs):
                return True
        return False
