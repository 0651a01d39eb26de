# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS Level-3 API responses with conditional affordance links.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode
import math

from ..domain import authorization
from ..domain.errors import WorkflowError, ValidationError, PermissionDenied
from ..models.entities import Referral, ActorContext
from ..models.enums import ReferralStatus
from ..models.responses import HalLink

PROBLEM_TYPE_BASE = "https://api.referrals.example.org/problems/"
REFERRALS_PATH = "/api/referrals"
AUDIT_PATH = "/api/audit"


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = urljoin(self.base_url, path.lstrip('/'))

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated or None
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")

    def build_collection_link(self, collection_path: str) -> HalLink:
        """Build link to parent collection."""
        return self.build_link(collection_path, title="Collection")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        action_path = f"{resource_path}/{action}"
        return self.build_link(
            action_path,
            method=method,
            content_type="application/json",
            title=title or action.title()
        )


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int,
                   page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'page_size': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build pagination links for a collection."""
        params = query_params or {}
        links = {
            'self': self._page_link(base_path, params, current_page, page_size, "Current page")
        }

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(
                base_path, params, current_page - 1, page_size, "Previous page"
            )

        if current_page < total_pages:
            links['next'] = self._page_link(
                base_path, params, current_page + 1, page_size, "Next page"
            )
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on role and referral state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_referral_affordances(
        self,
        referral_id: str,
        status: ReferralStatus,
        role: str
    ) -> Dict[str, HalLink]:
        """
        Build the links a role may follow from a referral in its current state.

        Terminal referrals expose no status or follow-up actions, though their
        details stay editable until linkage to care. Linkage is offered only
        to link-capable roles while the referral is still open.
        """
        links = {}
        base_path = f"{REFERRALS_PATH}/{referral_id}"

        # Always present
        links['self'] = self.link_builder.build_self_link(base_path)
        links['collection'] = self.link_builder.build_collection_link(REFERRALS_PATH)
        links['audit'] = self.link_builder.build_link(f"{base_path}/audit", title="Audit trail")

        if status != ReferralStatus.LINKED_TO_CARE and authorization.can_edit(role):
            links['edit'] = self.link_builder.build_link(
                base_path,
                method="PATCH",
                content_type="application/json",
                title="Edit referral"
            )

        if not status.is_terminal() and authorization.can_edit(role):
            links['update_status'] = self.link_builder.build_action_link(
                base_path, "status", title="Change status"
            )
            links['add_follow_up'] = self.link_builder.build_action_link(
                base_path, "follow-ups", title="Record follow-up"
            )

        if not status.is_terminal() and authorization.can_link(role):
            links['confirm_linkage'] = self.link_builder.build_action_link(
                base_path, "linkage", title="Confirm linkage to care"
            )

        if authorization.can_delete(role):
            links['delete'] = self.link_builder.build_link(
                base_path,
                method="DELETE",
                title="Delete referral"
            )

        return links


class HalResponseBuilder:
    """Main HAL response builder with comprehensive formatting capabilities."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    def build_resource_response(
        self,
        data: Dict[str, Any],
        links: Dict[str, HalLink]
    ) -> Dict[str, Any]:
        """Build a HAL resource response from data and its links."""
        response = dict(data)
        response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = math.ceil(total / page_size) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': {rel: link.model_dump(exclude_none=True) for rel, link in pagination_links.items()},
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"{PROBLEM_TYPE_BASE}{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link(
                "/openapi/openapi.json",
                title="API schema"
            )
        elif error_type in ("invalid-transition", "already-linked", "concurrent-modification"):
            # Conflicts are resolved against the current state
            resource = instance.split('/status')[0].split('/follow-ups')[0].split('/linkage')[0]
            if resource.startswith(REFERRALS_PATH + '/'):
                links['resource'] = self.link_builder.build_link(resource, title="Current referral")

        error_response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_referral(self, referral: Referral, actor: ActorContext) -> Dict[str, Any]:
        """Format a referral with the links the actor's role may follow."""
        links = self.builder.affordance_builder.build_referral_affordances(
            referral.id, referral.status, actor.role
        )
        return self.builder.build_resource_response(
            referral.model_dump(by_alias=True, mode="json"), links
        )

    def format_referral_collection(
        self,
        referrals: List[Referral],
        total: int,
        page: int,
        page_size: int,
        actor: ActorContext,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of referrals with HAL links."""
        items = [self.format_referral(referral, actor) for referral in referrals]
        return self.builder.build_collection_response(
            items, total, page, page_size, REFERRALS_PATH, filters
        )

    def format_projection_collection(
        self,
        rows: List[Any],
        total: int,
        page: int,
        page_size: int,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format reporting rows; rows carry no affordances."""
        items = [row.model_dump(by_alias=True, mode="json") for row in rows]
        return self.builder.build_collection_response(
            items, total, page, page_size, f"{REFERRALS_PATH}/projection", filters
        )

    def format_audit_trail(self, referral_id: str, entries: List[Any]) -> Dict[str, Any]:
        """Format a referral's audit log in append order."""
        link_builder = self.builder.link_builder
        return {
            'referralId': referral_id,
            'total': len(entries),
            '_links': {
                'self': link_builder.build_self_link(
                    f"{REFERRALS_PATH}/{referral_id}/audit"
                ).model_dump(exclude_none=True),
                'referral': link_builder.build_link(
                    f"{REFERRALS_PATH}/{referral_id}", title="Referral"
                ).model_dump(exclude_none=True)
            },
            '_embedded': {
                'items': [entry.model_dump(by_alias=True, mode="json") for entry in entries]
            }
        }

    def format_audit_collection(
        self,
        records: List[Any],
        total: int,
        page: int,
        page_size: int,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of cross-referral audit records."""
        link_builder = self.builder.link_builder
        items = []
        for record in records:
            item = record.to_dict()
            item['_links'] = {
                'referral': link_builder.build_link(
                    f"{REFERRALS_PATH}/{record.referral_id}", title="Referral"
                ).model_dump(exclude_none=True)
            }
            items.append(item)

        return self.builder.build_collection_response(
            items, total, page, page_size, AUDIT_PATH, filters
        )

    def format_workflow_error(self, error: WorkflowError, instance: str) -> Dict[str, Any]:
        """Format any workflow error as a problem document."""
        validation_errors = None
        if isinstance(error, ValidationError):
            validation_errors = error.validation_errors
        elif isinstance(error, PermissionDenied) and error.missing_permissions:
            validation_errors = [
                {"field": "role", "message": f"Missing capability {permission}", "type": "permission"}
                for permission in error.missing_permissions
            ]

        return self.builder.build_error_response(
            error.error_type,
            error.title,
            error.status_code,
            error.message,
            instance,
            validation_errors
        )

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error",
            "Validation Error",
            400,
            detail,
            instance,
            validation_errors
        )

    def format_not_found_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format a not found error response."""
        return self.builder.build_error_response(
            "resource-not-found",
            "Resource Not Found",
            404,
            detail,
            instance
        )

    def format_server_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format a server error response."""
        return self.builder.build_error_response(
            "internal-server-error",
            "Internal Server Error",
            500,
            detail,
            instance
        )


# Convenience function for creating HAL formatter
def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
