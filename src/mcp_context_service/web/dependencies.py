# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI dependencies for the HTTP interface.
"""

import logging

from fastapi import HTTPException

from ..services.context_service import ContextService

logger = logging.getLogger(__name__)

# Global service instance, set by the application lifespan
_service: ContextService | None = None


def set_context_service(service: ContextService | None) -> None:
    """Set (or clear) the global context service instance."""
    global _service
    _service = service


def get_context_service() -> ContextService:
    """Get the global context service instance."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Context service not initialized")
    return _service
