"""Catalog endpoints: offerings, plans, programs, modules and topics.

Every write drops the affected entries from the catalog cache.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_catalog_cache, get_current_admin
from app.models.program import Module, Offering, Plan, Program, Topic
from app.models.user import User
from app.schemas.program import (
    ModuleCreate,
    ModuleResponse,
    OfferingCreate,
    OfferingResponse,
    OfferingUpdate,
    PlanCreate,
    PlanResponse,
    PlanUpdate,
    ProgramCreate,
    ProgramResponse,
    ProgramUpdate,
    TopicCreate,
    TopicResponse,
)
from app.services.catalog_cache import CatalogCache
from core.db import get_db
from core.exceptions.base import BadRequestException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Catalog"])


def _offering_response(offering: Offering) -> OfferingResponse:
    return OfferingResponse(
        id=offering.id,
        name=offering.name,
        description=offering.description,
        offering_type=offering.offering_type,
        is_active=offering.is_active,
        plans=[PlanResponse.model_validate(p) for p in offering.plans if not p.is_deleted],
    )


def _build_module(data: ModuleCreate, position: int) -> Module:
    return Module(
        name=data.name,
        description=data.description,
        estimated_duration=data.estimated_duration,
        position=data.position if data.position is not None else position,
        topics=[
            Topic(
                name=topic.name,
                description=topic.description,
                estimated_duration=topic.estimated_duration,
                position=topic.position if topic.position is not None else index,
            )
            for index, topic in enumerate(data.topics)
        ],
    )


async def _get_offering(db_session: AsyncSession, offering_id: str) -> Offering:
    offering = await Offering.get_by_id(db_session, offering_id)
    if not offering:
        raise NotFoundException(message="Offering not found")
    return offering


async def _get_program(db_session: AsyncSession, program_id: str) -> Program:
    program = await Program.get_by_id(db_session, program_id)
    if not program:
        logger.warning(f"Program not found: {program_id}")
        raise NotFoundException(message="Program not found")
    return program


async def _get_module(db_session: AsyncSession, module_id: str) -> Module:
    module = await db_session.get(Module, module_id)
    if not module:
        raise NotFoundException(message="Module not found")
    return module


# ============== Offerings ==============


@router.get("/offerings", response_model=List[OfferingResponse])
async def list_offerings(
    db_session: AsyncSession = Depends(get_db),
) -> List[OfferingResponse]:
    """
    List offerings with their plans.

    Public endpoint - no authentication required.
    """
    logger.info("List offerings request")
    return [_offering_response(o) for o in await Offering.get_all(db_session)]


@router.get("/offerings/{offering_id}", response_model=OfferingResponse)
async def get_offering(
    offering_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> OfferingResponse:
    logger.info(f"Get offering request for id: {offering_id}")
    return _offering_response(await _get_offering(db_session, offering_id))


@router.post("/offerings", response_model=OfferingResponse, status_code=201)
async def create_offering(
    data: OfferingCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
) -> OfferingResponse:
    """
    Create an offering.

    Requires admin or owner role.
    """
    logger.info(f"Create offering request by user: {current_user.id}, name: {data.name}")
    offering = Offering(**data.model_dump(), plans=[], programs=[])
    db_session.add(offering)
    await db_session.commit()
    logger.info(f"Offering created successfully: {offering.id}")
    return _offering_response(offering)


@router.put("/offerings/{offering_id}", response_model=OfferingResponse)
async def update_offering(
    offering_id: str,
    data: OfferingUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> OfferingResponse:
    logger.info(f"Update offering request by user: {current_user.id}, offering_id: {offering_id}")
    offering = await _get_offering(db_session, offering_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(offering, field, value)
    await db_session.commit()
    catalog.invalidate_offering(offering_id)
    logger.info(f"Offering updated successfully: {offering_id}")
    return _offering_response(offering)


@router.delete("/offerings/{offering_id}")
async def delete_offering(
    offering_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> dict:
    """
    Soft delete an offering. Refused while it still has programs.

    Requires admin or owner role.
    """
    logger.info(f"Delete offering request by user: {current_user.id}, offering_id: {offering_id}")
    offering = await _get_offering(db_session, offering_id)
    live_programs = [p for p in offering.programs if not p.is_deleted]
    if live_programs:
        raise BadRequestException(
            message=f"Cannot delete offering because it has {len(live_programs)} program(s)"
        )
    offering.soft_delete()
    offering.is_active = False
    await db_session.commit()
    catalog.invalidate_offering(offering_id)
    logger.info(f"Offering deleted successfully: {offering_id}")
    return {"message": "Offering deleted successfully"}


# ============== Plans ==============


@router.post("/offerings/{offering_id}/plans", response_model=PlanResponse, status_code=201)
async def create_plan(
    offering_id: str,
    data: PlanCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> PlanResponse:
    """Add a monthly plan to a Marathon offering."""
    logger.info(f"Create plan request by user: {current_user.id}, offering_id: {offering_id}")
    offering = await _get_offering(db_session, offering_id)
    if not offering.is_marathon:
        raise BadRequestException(message="Plans can only be added to Marathon offerings")
    plan = Plan(offering_id=offering.id, **data.model_dump())
    db_session.add(plan)
    await db_session.commit()
    catalog.invalidate_offering(offering_id)
    logger.info(f"Plan created successfully: {plan.id}")
    return PlanResponse.model_validate(plan)


@router.put("/plans/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    data: PlanUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> PlanResponse:
    logger.info(f"Update plan request by user: {current_user.id}, plan_id: {plan_id}")
    plan = await Plan.get_by_id(db_session, plan_id)
    if not plan:
        raise NotFoundException(message="Plan not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(plan, field, value)
    await db_session.commit()
    catalog.invalidate_plan(plan)
    logger.info(f"Plan updated successfully: {plan_id}")
    return PlanResponse.model_validate(plan)


@router.delete("/plans/{plan_id}")
async def delete_plan(
    plan_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> dict:
    logger.info(f"Delete plan request by user: {current_user.id}, plan_id: {plan_id}")
    plan = await Plan.get_by_id(db_session, plan_id)
    if not plan:
        raise NotFoundException(message="Plan not found")
    plan.soft_delete()
    await db_session.commit()
    catalog.invalidate_plan(plan)
    logger.info(f"Plan deleted successfully: {plan_id}")
    return {"message": "Plan deleted successfully"}


# ============== Programs ==============


@router.get("/programs", response_model=List[ProgramResponse])
async def list_programs(
    offering_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
) -> List[ProgramResponse]:
    """
    List programs, optionally for one offering.

    Public endpoint - no authentication required.
    """
    logger.info(f"List programs request - offering_id: {offering_id}")
    programs = await Program.get_all(db_session, offering_id=offering_id)
    return [ProgramResponse.model_validate(p) for p in programs]


@router.get("/programs/{program_id}", response_model=ProgramResponse)
async def get_program(
    program_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> ProgramResponse:
    """Get a program with its modules and topics."""
    logger.info(f"Get program request for id: {program_id}")
    return ProgramResponse.model_validate(await _get_program(db_session, program_id))


@router.post("/programs", response_model=ProgramResponse, status_code=201)
async def create_program(
    data: ProgramCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> ProgramResponse:
    """
    Create a program, optionally with its module and topic outline.

    Requires admin or owner role.
    """
    logger.info(f"Create program request by user: {current_user.id}, name: {data.name}")
    offering = await _get_offering(db_session, data.offering_id)
    program = Program(
        **data.model_dump(exclude={"modules"}),
        modules=[_build_module(m, index) for index, m in enumerate(data.modules)],
    )
    db_session.add(program)
    await db_session.commit()
    catalog.invalidate_offering(offering.id)
    program = await _get_program(db_session, program.id)
    logger.info(f"Program created successfully: {program.id}")
    return ProgramResponse.model_validate(program)


@router.put("/programs/{program_id}", response_model=ProgramResponse)
async def update_program(
    program_id: str,
    data: ProgramUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> ProgramResponse:
    logger.info(f"Update program request by user: {current_user.id}, program_id: {program_id}")
    program = await _get_program(db_session, program_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(program, field, value)
    await db_session.commit()
    catalog.invalidate_program(program_id)
    logger.info(f"Program updated successfully: {program_id}")
    return ProgramResponse.model_validate(program)


@router.delete("/programs/{program_id}")
async def delete_program(
    program_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> dict:
    """
    Soft delete a program.

    Requires admin or owner role.
    """
    logger.info(f"Delete program request by user: {current_user.id}, program_id: {program_id}")
    program = await _get_program(db_session, program_id)
    program.soft_delete()
    program.is_active = False
    await db_session.commit()
    catalog.invalidate_program(program_id)
    logger.info(f"Program deleted successfully: {program_id}")
    return {"message": "Program deleted successfully"}


# ============== Modules / Topics ==============


@router.post("/programs/{program_id}/modules", response_model=ModuleResponse, status_code=201)
async def create_module(
    program_id: str,
    data: ModuleCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> ModuleResponse:
    logger.info(f"Create module request by user: {current_user.id}, program_id: {program_id}")
    program = await _get_program(db_session, program_id)
    module = _build_module(data, len(program.modules))
    program.modules.append(module)
    await db_session.commit()
    catalog.invalidate_program(program_id)
    logger.info(f"Module created successfully: {module.id}")
    return ModuleResponse.model_validate(module)


@router.delete("/modules/{module_id}")
async def delete_module(
    module_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> dict:
    logger.info(f"Delete module request by user: {current_user.id}, module_id: {module_id}")
    module = await _get_module(db_session, module_id)
    program_id = module.program_id
    await db_session.delete(module)
    await db_session.commit()
    catalog.invalidate_program(program_id)
    return {"message": "Module deleted successfully"}


@router.post("/modules/{module_id}/topics", response_model=TopicResponse, status_code=201)
async def create_topic(
    module_id: str,
    data: TopicCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> TopicResponse:
    logger.info(f"Create topic request by user: {current_user.id}, module_id: {module_id}")
    module = await _get_module(db_session, module_id)
    topic = Topic(
        name=data.name,
        description=data.description,
        estimated_duration=data.estimated_duration,
        position=data.position if data.position is not None else len(module.topics),
    )
    module.topics.append(topic)
    await db_session.commit()
    catalog.invalidate_program(module.program_id)
    logger.info(f"Topic created successfully: {topic.id}")
    return TopicResponse.model_validate(topic)


@router.delete("/topics/{topic_id}")
async def delete_topic(
    topic_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> dict:
    logger.info(f"Delete topic request by user: {current_user.id}, topic_id: {topic_id}")
    topic = await Topic.get_by_id(db_session, topic_id)
    if not topic:
        raise NotFoundException(message="Topic not found")
    module = await _get_module(db_session, topic.module_id)
    await db_session.delete(topic)
    await db_session.commit()
    catalog.invalidate_program(module.program_id)
    return {"message": "Topic deleted successfully"}
